from .admin import Admin
from .application import Application
from .conversation import Conversation, Message
from .credit import CreditAccount, CreditHistory
from .institute import Institute
from .job import Job
from .notification import Notification
from .profile import UserEducation, UserExperience, UserSkill, UserSpeciality
from .saved_job import SavedJob
from .user import User
from .verification import InstituteVerification, UserVerification
from .view import View

__all__ = [
    "Admin",
    "Application",
    "Conversation",
    "CreditAccount",
    "CreditHistory",
    "Institute",
    "InstituteVerification",
    "Job",
    "Message",
    "Notification",
    "SavedJob",
    "User",
    "UserEducation",
    "UserExperience",
    "UserSkill",
    "UserSpeciality",
    "UserVerification",
    "View",
]

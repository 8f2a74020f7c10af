from livechat.services.message_service import MessageService
from livechat.services.profile_service import ProfileService

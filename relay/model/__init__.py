from relay.model.user import User
from relay.model.chat_room import ChatRoom
from relay.model.chat_participant import ChatParticipant
from relay.model.chat_message import ChatMessage
from relay.model.presence import UserPresence

__all__ = ["User", "ChatRoom", "ChatParticipant", "ChatMessage", "UserPresence"]

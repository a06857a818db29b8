from relay.crud.user_crud import user_crud
from relay.crud.chat_room_crud import chat_room_crud
from relay.crud.chat_participant_crud import chat_participant_crud
from relay.crud.chat_message_crud import chat_message_crud
from relay.crud.presence_crud import presence_crud

__all__ = [
    "user_crud",
    "chat_room_crud",
    "chat_participant_crud",
    "chat_message_crud",
    "presence_crud",
]

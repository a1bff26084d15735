"""Socket.IO event names shared with the Flock server."""

# ---- emitted by the client ----

JOIN_FLOCK = "join_flock"
LEAVE_FLOCK = "leave_flock"
SEND_MESSAGE = "send_message"
TYPING = "typing"
STOP_TYPING = "stop_typing"
REACT = "react"
REMOVE_REACT = "remove_react"
VOTE_VENUE = "vote_venue"
UPDATE_LOCATION = "update_location"
STOP_SHARING_LOCATION = "stop_sharing_location"
SELECT_VENUE = "select_venue"

SEND_DM = "send_dm"
DM_TYPING = "dm_typing"
DM_STOP_TYPING = "dm_stop_typing"
DM_REACT = "dm_react"
DM_REMOVE_REACT = "dm_remove_react"
DM_VOTE_VENUE = "dm_vote_venue"
DM_SHARE_LOCATION = "dm_share_location"
DM_STOP_SHARING_LOCATION = "dm_stop_sharing_location"
DM_PIN_VENUE = "dm_pin_venue"

FLOCK_INVITE = "flock_invite"
FLOCK_INVITE_RESPONSE = "flock_invite_response"
FRIEND_REQUEST = "friend_request"
FRIEND_RESPONSE = "friend_response"
CROWD_UPDATE = "crowd_update"

# ---- delivered by the server ----

NEW_MESSAGE = "new_message"
USER_TYPING = "user_typing"
USER_STOPPED_TYPING = "user_stopped_typing"
REACTION_ADDED = "reaction_added"
REACTION_REMOVED = "reaction_removed"
NEW_VOTE = "new_vote"
LOCATION_UPDATE = "location_update"
MEMBER_STOPPED_SHARING = "member_stopped_sharing"
VENUE_SELECTED = "venue_selected"
MEMBER_JOINED = "member_joined"
MEMBER_LEFT = "member_left"
ROOM_MEMBERS = "room_members"

NEW_DM = "new_dm"
DM_USER_TYPING = "dm_user_typing"
DM_USER_STOPPED_TYPING = "dm_user_stopped_typing"
DM_REACTION_ADDED = "dm_reaction_added"
DM_REACTION_REMOVED = "dm_reaction_removed"
DM_NEW_VOTE = "dm_new_vote"
DM_LOCATION_UPDATE = "dm_location_update"
DM_MEMBER_STOPPED_SHARING = "dm_member_stopped_sharing"
DM_VENUE_PINNED = "dm_venue_pinned"

FLOCK_INVITE_RECEIVED = "flock_invite_received"
FLOCK_INVITE_RESPONDED = "flock_invite_responded"
FRIEND_REQUEST_RECEIVED = "friend_request_received"
FRIEND_REQUEST_RESPONDED = "friend_request_responded"

# CROWD_UPDATE is broadcast back to every client under the same name.

ERROR = "error"

# Raised by the transport itself, not by the server.
CONNECT = "connect"
DISCONNECT = "disconnect"

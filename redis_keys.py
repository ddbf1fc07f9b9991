REDIS_ID_COUNTER = "seq:{kind}" # user | conversation | message | call

REDIS_USER_KEY = "user:{user_id}" # hash - user row
REDIS_USERS_INDEX = "users:all" # sorted set of user ids (score = id)
REDIS_USERNAME_INDEX = "users:by_username" # hash username -> user id
REDIS_USER_CONVERSATIONS = "user:{user_id}:conversations" # set of conversation ids
REDIS_USER_MESSAGES = "user:{user_id}:messages" # set of message ids sent by the user
REDIS_USER_CALLS = "user:{user_id}:calls" # sorted set of call ids (score = id)

REDIS_CONVERSATION_KEY = "conversation:{conversation_id}" # hash - conversation row
REDIS_CONVERSATION_PARTICIPANTS = "conversation:{conversation_id}:participants" # set of user ids
REDIS_CONVERSATION_MESSAGES = "conversation:{conversation_id}:messages" # sorted set of message ids (score = id)
REDIS_DIRECT_KEY = "direct:{low}:{high}" # string - conversation id for a user pair

REDIS_MESSAGE_KEY = "message:{message_id}" # hash - message row
REDIS_MESSAGE_READS = "message:{message_id}:reads" # hash user id -> read_at

REDIS_CALL_KEY = "call:{call_id}" # hash - call row

REDIS_RATE_LIMIT_KEY = "ratelimit:{client}:{window}" # counter with window TTL

# **Example `call:{id}` hash fields**
# - `id` = integer
# - `caller_id` / `receiver_id` = user ids
# - `call_type` = audio | video
# - `status` = initiated | ringing | answered | ended | missed | rejected
# - `start_time` / `end_time` = ISO timestamps (set on answered / ended)
# - `duration` = integer seconds
# - `created_at` = ISO timestamp

REDIS_META_KEY = "room:meta:{slug}" # room id - hash with room metadata
REDIS_CLIENTS_KEY = "room:clients:{slug}" # room id - set of client ids
REDIS_LOCK_KEY = "room:lock:{slug}" # room id - lock serialising membership updates
REDIS_META_PATTERN = "room:meta:*"

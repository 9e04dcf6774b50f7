# JSON context for placeholder evaluation

# +---------------------------+
# |   Persisted messages      |   (MessageStore, external)
# |---------------------------|
# | ```json blocks            |
# | tool-call outputs         |
# +---------------------------+
#              |
#              v  entry_extractor
# +---------------------------+
# |   Runtime cache           |   (per conversation:run, TTL)
# |---------------------------|
# | Entry list, appended to   |
# | as tool results arrive    |
# +---------------------------+
#              |
#              v  json_root
# +---------------------------+
# |   JSON root [e0, e1, ...] |
# +---------------------------+
#              |
#              v  placeholder_evaluator
#   ${{ $[-1].field }} -> value

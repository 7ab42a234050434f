"""
Thread Archiver – keep local copies of 4chan threads matching a keyword.

Supports:
  • Keyword search across one, several or all boards' catalogs
  • Watching matched threads with conditional polling and adaptive backoff
  • JSON + static HTML snapshots written atomically per thread
  • Media downloads deduplicated through a local SQLite store
  • Resumable operation across restarts
"""

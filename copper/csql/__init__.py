"""SQLite connections, request transactions, queries and migrations."""
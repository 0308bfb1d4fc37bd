"""E-mail search index synchronization from MongoDB change streams."""

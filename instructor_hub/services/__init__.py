"""Domain services: persistence, blob storage, exports and revenue."""

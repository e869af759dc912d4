"""
services/ — business logic. Routers and the sync engine call in here;
nothing in services/ knows about HTTP.
"""

"""Collaborators around the sync core: catalog loading and result export.

Kept apart from the transports and the claim protocol so HTTP routes, the
command line and the session store can share them.
"""

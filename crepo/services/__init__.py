"""
Services for crepo.

Each service wraps one concern of the repository (nodes, blobs,
references, workspaces, namespaces) and works against a shared session.
"""

"""
Media Attachment Store.

Evidentiary photos per trace. Blobs are uploaded first, the URL is resolved,
and only then is a media row written; an unresolved upload never gets a row.
"""

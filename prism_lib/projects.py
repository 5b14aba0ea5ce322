from __future__ import annotations

from .errors import ProjectNotFound
from .records import Project
from .store import PROJECTS, DocumentStore


def find_owned_project(store: DocumentStore, user_id: str, reference: str) -> Project:
    """Resolve ``reference`` (slug first, then id) among the caller's projects.

    A project owned by someone else raises the same ``ProjectNotFound`` as a
    project that does not exist.
    """

    reference = (reference or "").strip()
    if not reference:
        raise ProjectNotFound()
    projects = store.collection(PROJECTS)
    for filter in ({"slug": reference, "userId": user_id}, {"_id": reference, "userId": user_id}):
        document = projects.find_one(filter)
        if document is None:
            continue
        project = Project.from_document(document)
        if project is not None and project.user_id == user_id:
            return project
    raise ProjectNotFound()

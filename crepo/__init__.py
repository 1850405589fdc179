"""
crepo - A content repository (hierarchical, typed node tree) on SQLAlchemy + SQLite.

Main API:
    from crepo import Repository
    from crepo.items import Node

    # Open or create a repository
    repo = Repository.open("/path/to/repo")
    repo.login()

    # Store a node with a property and a child
    root = Node("/", is_new=False)
    page = root.add_node("page")
    page.set_property("title", "Hello")
    page.add_node("body").set_property("text", "...")
    repo.store_node(page)

    # Read it back
    stored = repo.get_node("/page")
    stored.child_names

    # Structural operations
    repo.copy_node("/page", "/page-copy")
    repo.move_node("/page-copy", "/archived")
    repo.delete_node("/archived")

    # Always close when done
    repo.close()
"""

__version__ = "0.1.0"

from .repository import Repository  # noqa: E402

__all__ = ["Repository", "__version__"]

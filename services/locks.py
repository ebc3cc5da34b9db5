from sqlalchemy.exc import IntegrityError

from models import db
from models.space_lock import SpaceLock


def lock_space(space_id: int) -> None:
    """
    Serialize booking writers for one space until the current transaction ends.

    The UPDATE takes a row lock on PostgreSQL and the database write lock on
    SQLite, so a second writer blocks here until the first commits or rolls
    back, then sees its rows.
    """
    if _bump(space_id):
        return

    db.session.add(SpaceLock(space_id=space_id, version=1))
    try:
        db.session.flush()
        return
    except IntegrityError:
        # another writer created the row first; wait on it instead
        db.session.rollback()

    if not _bump(space_id):
        raise RuntimeError(f"could not acquire booking lock for space {space_id}")


def _bump(space_id: int) -> bool:
    updated = (
        SpaceLock.query
        .filter(SpaceLock.space_id == space_id)
        .update({SpaceLock.version: SpaceLock.version + 1}, synchronize_session=False)
    )
    return updated > 0

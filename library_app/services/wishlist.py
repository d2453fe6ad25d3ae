import logging
from typing import Any, Dict, List, Optional, Union

from library_app.database import get_db_connection, transaction
from library_app.errors import Conflict, NotFound
from library_app.schemas import WishlistInput, validate
from library_app.services.catalog import CatalogStore
from library_app.services.identity import IdentityStore

logger = logging.getLogger(__name__)


class WishlistStore:
    """Books a user has bookmarked for later."""

    def __init__(self, db_file: Optional[str] = None, identity: Optional[IdentityStore] = None,
                 catalog: Optional[CatalogStore] = None) -> None:
        self.db_file = db_file
        self.identity = identity or IdentityStore(db_file)
        self.catalog = catalog or CatalogStore(db_file)

    def add(self, user: Union[int, str], book_id: int) -> Dict[str, Any]:
        payload = validate(WishlistInput, {"book_id": book_id})
        with transaction(db_file=self.db_file) as conn:
            user_id = self.identity.resolve_user(user, conn=conn)
            self.catalog.get_availability(payload.book_id, conn=conn)
            if conn.execute(
                "SELECT 1 FROM wishlist WHERE user_id = ? AND book_id = ?", (user_id, payload.book_id)
            ).fetchone():
                raise Conflict("Book already in wishlist")
            cursor = conn.execute(
                "INSERT INTO wishlist (user_id, book_id) VALUES (?, ?)", (user_id, payload.book_id)
            )
            entry_id = cursor.lastrowid
        logger.info(f"User {user_id} added book {payload.book_id} to wishlist")
        return {"id": entry_id, "user_id": user_id, "book_id": payload.book_id}

    def remove(self, user: Union[int, str], book_id: int) -> None:
        with transaction(db_file=self.db_file) as conn:
            user_id = self.identity.resolve_user(user, conn=conn)
            cursor = conn.execute(
                "DELETE FROM wishlist WHERE user_id = ? AND book_id = ?", (user_id, book_id)
            )
            if cursor.rowcount == 0:
                raise NotFound("Book not in wishlist")
        logger.info(f"User {user_id} removed book {book_id} from wishlist")

    def list(self, user: Union[int, str]) -> List[Dict[str, Any]]:
        conn = get_db_connection(self.db_file)
        try:
            user_id = self.identity.resolve_user(user, conn=conn)
            rows = conn.execute(
                """SELECT wishlist.id, wishlist.user_id, wishlist.book_id, wishlist.created_at,
                          books.title, books.author, books.cover_image, books.available
                   FROM wishlist
                   JOIN books ON wishlist.book_id = books.id
                   WHERE wishlist.user_id = ?
                   ORDER BY wishlist.created_at DESC, wishlist.id DESC""",
                (user_id,),
            ).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()

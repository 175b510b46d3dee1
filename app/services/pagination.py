"""
Keyset pagination over transactions.

Pages are ordered by (date desc, id desc) and continue from the last row of
the previous page, so callers may modify and commit rows between pages
without skipping or repeating any.
"""

from typing import Iterator, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Query

from app.models.transaction import Transaction


def iter_transaction_pages(query: Query, page_size: int, cap: Optional[int] = None) -> Iterator[List[Transaction]]:
    """
    Yield pages of at most page_size rows, stopping after cap rows in total.

    Args:
        query: Filtered Transaction query without ordering or limit
        page_size: Rows per page (the write batch size)
        cap: Hard limit on rows yielded across all pages, None for no limit
    """
    cursor = None
    scanned = 0

    while cap is None or scanned < cap:
        page_query = query
        if cursor is not None:
            last_date, last_id = cursor
            page_query = page_query.filter(
                or_(
                    Transaction.date < last_date,
                    and_(Transaction.date == last_date, Transaction.id < last_id),
                )
            )

        limit = page_size if cap is None else min(page_size, cap - scanned)
        page = page_query.order_by(Transaction.date.desc(), Transaction.id.desc()).limit(limit).all()
        if not page:
            return

        # Capture the cursor before the caller touches (and maybe expires) the rows
        cursor = (page[-1].date, page[-1].id)
        scanned += len(page)
        yield page

        if len(page) < limit:
            return

# lending/models/transition.py
from typing import Optional
from pydantic import BaseModel

from .borrow_request import BorrowRequest
from .item import Item


class Transition(BaseModel):
    """
    One lifecycle step to commit atomically. The `*_before` snapshots are the
    values the caller read; the write only succeeds if the stored rows still
    match them.
    """
    request_before: BorrowRequest
    request_after: BorrowRequest
    item_before: Optional[Item] = None
    item_after: Optional[Item] = None

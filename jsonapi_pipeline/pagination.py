"""
http://jsonapi.org/format/#fetching-pagination

A server MAY choose to limit the number of resources returned
in a response to a subset ("page") of the whole set available.
A server MAY provide links to traverse a paginated data set ("pagination links").

The following keys MUST be used for pagination links:

first: the first page of data
last: the last page of data
prev: the previous page of data
next: the next page of data

Both the page[offset]/page[limit] and the page[number]/page[size] styles are supported,
the links are built in the style used by the request.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urlencode

PARAM_PAGE_LIMIT = "page[limit]"
PARAM_PAGE_OFFSET = "page[offset]"
PARAM_PAGE_NUMBER = "page[number]"
PARAM_PAGE_SIZE = "page[size]"
OFFSET_PARAMS = (PARAM_PAGE_LIMIT, PARAM_PAGE_OFFSET)
PAGE_PARAMS = (PARAM_PAGE_NUMBER, PARAM_PAGE_SIZE)


@dataclass(frozen=True)
class Pagination:
    """
    Pagination window. The page[number]/page[size] style is stored as an offset and a limit,
    page_based remembers which style the client used.
    A zero limit means unbounded.
    """

    limit: int = 0
    offset: int = 0
    page_based: bool = False

    @classmethod
    def from_page(cls, number: int, size: int) -> "Pagination":
        """
        :param number: page number, starting at 1
        :param size: page size
        """
        return cls(limit=size, offset=(max(number, 1) - 1) * size, page_based=True)

    @property
    def page_number(self) -> int:
        if not self.limit:
            return 1
        return self.offset // self.limit + 1

    def first(self) -> "Pagination":
        return replace(self, offset=0)

    def previous(self) -> "Pagination":
        """
        :return: the previous window, or self when this is the first one
        """
        if self.offset == 0 or not self.limit:
            return self
        return replace(self, offset=max(self.offset - self.limit, 0))

    def next(self, total: int) -> "Pagination":
        """
        :return: the next window, or self when there's no further page
        """
        if not self.limit or self.offset + self.limit >= total:
            return self
        return replace(self, offset=self.offset + self.limit)

    def last(self, total: int) -> "Pagination":
        if not self.limit or total <= 0:
            return replace(self, offset=0)
        return replace(self, offset=((total - 1) // self.limit) * self.limit)

    def query_params(self) -> List[Tuple[str, str]]:
        """
        :return: the url query arguments for this window, in the request style
        """
        if self.page_based:
            return [(PARAM_PAGE_NUMBER, str(self.page_number)), (PARAM_PAGE_SIZE, str(self.limit))]
        return [(PARAM_PAGE_LIMIT, str(self.limit)), (PARAM_PAGE_OFFSET, str(self.offset))]


@dataclass
class PaginationLinks:
    self: Optional[str] = None
    first: Optional[str] = None
    prev: Optional[str] = None
    next: Optional[str] = None
    last: Optional[str] = None
    total: Optional[int] = None

    def to_dict(self) -> dict:
        result = {}
        for name in ("self", "first", "prev", "next", "last"):
            value = getattr(self, name)
            if value is not None:
                result[name] = value
        return result


def params_without_pagination(params: Iterable[Tuple[str, str]]) -> Tuple[List[Tuple[str, str]], bool]:
    """
    :param params: (key, value) url query arguments
    :return: the arguments without the pagination ones, and whether the page[number]/page[size] style was used
    """
    result = []
    page_based = False
    for key, value in params:
        if key in OFFSET_PARAMS:
            continue
        if key in PAGE_PARAMS:
            page_based = True
            continue
        result.append((key, value))
    return result, page_based


def encode_query(params: Iterable[Tuple[str, str]]) -> str:
    """Encode the query arguments sorted by key, values of a key keep their order"""
    return urlencode(sorted(params, key=lambda item: item[0]))


def page_link(path: str, params: Iterable[Tuple[str, str]], pagination: Optional[Pagination] = None) -> str:
    items = list(params)
    if pagination is not None:
        items += pagination.query_params()
    if not items:
        return path
    return f"{path}?{encode_query(items)}"


def build_pagination_links(path: str, params: Iterable[Tuple[str, str]], pagination: Pagination, total: int) -> PaginationLinks:
    """
    Create the pagination links for a list response

    self, first and last are always present, prev and next only when a further page exists
    in that direction. All the non-pagination query arguments are kept.

    :param path: url path of the collection
    :param params: (key, value) url query arguments of the request
    :param pagination: current pagination window
    :param total: total number of resources matching the query
    """
    other_params, page_based = params_without_pagination(params)
    pagination = replace(pagination, page_based=page_based or pagination.page_based)
    links = PaginationLinks(total=total)
    links.self = page_link(path, other_params, pagination)

    next_page = pagination.next(total)
    if next_page != pagination:
        links.next = page_link(path, other_params, next_page)

    prev_page = pagination.previous()
    if prev_page != pagination:
        links.prev = page_link(path, other_params, prev_page)

    links.last = page_link(path, other_params, pagination.last(total))
    links.first = page_link(path, other_params, pagination.first())
    return links

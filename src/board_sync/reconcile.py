"""Identifier set reconciliation."""

from typing import List, Sequence


def difference(a: Sequence[str], b: Sequence[str]) -> List[str]:
    """Return every element of `a` that does not appear in `b`.

    Order of `a` is preserved and duplicates in `a` are kept. Matching is exact
    string equality.

    This is a nested scan, O(len(a) * len(b)). Boards and tables handled here
    hold at most a few hundred entries, so no set is built; switching `b` to a
    set only changes performance, not the result.
    """
    result = []
    for item in a:
        found = False
        for other in b:
            if item == other:
                found = True
                break
        if not found:
            result.append(item)
    return result

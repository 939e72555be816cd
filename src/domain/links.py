"""
Build the derived link categories from classified links.

- linkTypes: links grouped by their link type code (a closed partition)
- linkDomains: links grouped by hostname
"""

from typing import Dict, List, Optional
from urllib.parse import urlparse

from domain.entities import (
    NEVER_APPEARED,
    UNKNOWN_POSITION,
    is_valid_order,
    refresh_source_count,
)


DEFAULT_OTHER_LINK_TYPE_CODE = 'oth'
DEFAULT_OTHER_LINK_TYPE_NAME = 'Other'


def extract_domain(url: str) -> str:
    """
    Extract hostname from a URL, without 'www.'.

    Bare domains ('example.com/page') are accepted.
    """
    if not url:
        return ''
    url = url.strip()
    if '://' not in url:
        url = 'https://' + url
    try:
        hostname = urlparse(url).hostname or ''
    except ValueError:
        return ''
    hostname = hostname.lower()
    if hostname.startswith('www.'):
        hostname = hostname[4:]
    return hostname if '.' in hostname else ''


def _member(link: dict) -> dict:
    return {
        'link': link.get('link') or link.get('value'),
        'mentions': link.get('mentions') or 0,
        'mentions_by_source': dict(link.get('mentions_by_source') or {}),
        'appearance_order': link.get('appearance_order', NEVER_APPEARED),
        'appearance_order_by_source': dict(link.get('appearance_order_by_source') or {}),
    }


def _earliest(orders) -> Optional[float]:
    valid = [order for order in orders if is_valid_order(order)]
    return min(valid) if valid else None


def _group(links: List[dict], key_func, seed_func) -> List[dict]:
    groups: Dict[str, dict] = {}

    for link in links:
        key = key_func(link)
        if not key:
            continue

        group = groups.get(key)
        if group is None:
            group = seed_func(link, key)
            group.update({'mentions': 0, 'mentions_by_source': {}, 'sources': []})
            groups[key] = group

        group['mentions'] += link.get('mentions') or 0
        for source_id, count in (link.get('mentions_by_source') or {}).items():
            if count:
                group['mentions_by_source'][source_id] = group['mentions_by_source'].get(source_id, 0) + count
        group['sources'].append(_member(link))

    results = list(groups.values())
    for group in results:
        refresh_source_count(group)

        if not group['mentions']:
            group['appearance_order'] = NEVER_APPEARED
            group['appearance_order_by_source'] = {}
            continue

        # A group appears when its first member appears
        earliest = _earliest(member['appearance_order'] for member in group['sources'])
        group['appearance_order'] = earliest if earliest is not None else UNKNOWN_POSITION

        by_source = {}
        for source_id in group['mentions_by_source']:
            earliest = _earliest(
                member['appearance_order_by_source'].get(source_id) for member in group['sources']
            )
            by_source[source_id] = earliest if earliest is not None else UNKNOWN_POSITION
        group['appearance_order_by_source'] = by_source

    return results


def build_link_types(links: List[dict], type_names: Optional[Dict[str, str]] = None) -> List[dict]:
    """
    Group links by link type code.

    Args:
        links: Link entities carrying 'link_type' (missing → 'oth')
        type_names: Link type code -> display name

    Returns:
        One entity per link type, with members under 'sources'.
    """
    type_names = type_names or {}

    def seed(link, code):
        return {
            'type': 'linkType',
            'code': code,
            'value': type_names.get(code, DEFAULT_OTHER_LINK_TYPE_NAME if code == DEFAULT_OTHER_LINK_TYPE_CODE else code),
        }

    return _group(links, lambda link: link.get('link_type') or DEFAULT_OTHER_LINK_TYPE_CODE, seed)


def build_link_domains(links: List[dict], type_names: Optional[Dict[str, str]] = None) -> List[dict]:
    """
    Group links by hostname.

    The link type of a domain is inherited from its first link.
    """
    type_names = type_names or {}

    def seed(link, domain):
        link_type = link.get('link_type') or DEFAULT_OTHER_LINK_TYPE_CODE
        return {
            'type': 'linkDomain',
            'code': domain,
            'value': domain,
            'link': 'https://' + domain,
            'link_type': link_type,
            'link_type_name': type_names.get(link_type, DEFAULT_OTHER_LINK_TYPE_NAME),
        }

    return _group(links, lambda link: extract_domain(link.get('link') or link.get('value') or ''), seed)

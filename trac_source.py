'''
Copyright © 2022 Matthias Koeppe

This software is free software: you can redistribute it and/or modify
it under the terms of the GNU Lesser General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This sotfware is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
GNU Lesser General Public License for more details.

You should have received a copy of the GNU Lesser General Public License
along with this library. If not, see <http://www.gnu.org/licenses/>.
'''

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple
from urllib.parse import quote, urlsplit, urlunsplit
from xmlrpc import client

from diskcache import Cache

log = logging.getLogger("trac_to_gitlab")


@dataclass(frozen=True)
class Comment:
    author: str
    text: str
    time: Optional[datetime] = None


@dataclass(frozen=True)
class Ticket:
    id: int
    summary: str
    description: str = ''
    owner: str = ''
    reporter: str = ''
    keywords: str = ''
    component: str = ''
    milestone: str = ''
    created_at: Optional[datetime] = None
    comments: Tuple[Comment, ...] = ()


def convert_xmlrpc_datetime(dt):
    if dt is None or isinstance(dt, datetime):
        return dt
    # datetime.strptime(str(dt), "%Y%m%dT%X").isoformat() + "Z"
    return datetime.strptime(str(dt), "%Y%m%dT%H:%M:%S")


def rpc_url(url, username=None, password=None):
    """
    Return the XML-RPC endpoint of the Trac instance at ``url``.

    With credentials, the authenticated endpoint ``/login/xmlrpc`` is used
    and the credentials are sent with HTTP basic authentication.
    """
    if not username:
        return url.rstrip('/') + '/xmlrpc'
    parts = urlsplit(url.rstrip('/'))
    netloc = '%s:%s@%s' % (quote(username, safe=''), quote(password or '', safe=''), parts.netloc)
    return urlunsplit((parts.scheme, netloc, parts.path + '/login/xmlrpc', '', ''))


def quote_query_value(value):
    "Escape the characters that separate the terms and values of a Trac query"
    return re.sub(r'([\\&|])', r'\\\1', value)


def comments_from_changelog(changelog):
    "Return the non-blank comments of a ticket change log, in their original order"
    comments = []
    for change in changelog:
        # change is (time, author, field, oldvalue, newvalue, permanent)
        if change[2] == 'comment' and change[4].strip():
            comments.append(Comment(author=change[1],
                                    text=change[4],
                                    time=convert_xmlrpc_datetime(change[0])))
    return tuple(comments)


def ticket_from_rpc(src_ticket, changelog):
    # src_ticket is [id, time_created, time_changed, attributes]
    data = src_ticket[3]
    return Ticket(id=src_ticket[0],
                  summary=data.get('summary', ''),
                  description=data.get('description', ''),
                  owner=data.get('owner', ''),
                  reporter=data.get('reporter', ''),
                  keywords=data.get('keywords', ''),
                  component=data.get('component', ''),
                  milestone=data.get('milestone', ''),
                  created_at=convert_xmlrpc_datetime(src_ticket[1]),
                  comments=comments_from_changelog(changelog))


class TracSource:
    """
    Tickets of a Trac instance, read through the XML-RPC plugin.

    If ``cache_dir`` is given, the results of the remote calls are memoized
    on disk, so that repeated runs against the same Trac do not query it
    again.
    """

    def __init__(self, url, username=None, password=None, cache_dir=None, proxy=None):
        self.url = url.rstrip('/')
        if proxy is None:
            proxy = client.ServerProxy(rpc_url(self.url, username, password))
        self.source = proxy
        self.cache = None
        if cache_dir:
            self.cache = Cache(cache_dir, size_limit=int(20e9))
            self._query = self.cache.memoize(name=self.url + ':ticket.query')(self._query)
            self._get_tickets = self.cache.memoize(name=self.url + ':ticket.get')(self._get_tickets)
            self._change_log = self.cache.memoize(name=self.url + ':ticket.changeLog')(self._change_log)

    def _query(self, query):
        return list(self.source.ticket.query(query))

    def _get_tickets(self, ticket_ids):
        call = client.MultiCall(self.source)
        for ticket_id in ticket_ids:
            call.ticket.get(ticket_id)
        return list(call())

    def _change_log(self, ticket_id):
        return list(self.source.ticket.changeLog(ticket_id))

    def list_open_by_component(self, component, max_count=0):
        return self.list_by_query('component=%s&status=!closed&max=%d'
                                  % (quote_query_value(component), max_count or 0))

    def list_by_query(self, query):
        """
        Return the tickets matching the Trac query ``query``, with their comments.
        """
        log.debug('Querying Trac: %s' % query)
        ticket_ids = self._query(query)
        tickets = []
        for src_ticket in self._get_tickets(tuple(ticket_ids)):
            tickets.append(ticket_from_rpc(src_ticket, self._change_log(src_ticket[0])))
        return tickets

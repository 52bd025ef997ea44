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
from collections import defaultdict
from dataclasses import dataclass, field

log = logging.getLogger("trac_to_gitlab")

USER_FETCH_PAGE_SIZE = 100
USER_FETCH_MAX_PAGES = 50
# GitLab creates the 'root' administrator first
ADMINISTRATOR_ID = 1


@dataclass(frozen=True)
class RemoteUser:
    id: int
    username: str
    attributes: dict = field(default_factory=dict, compare=False, repr=False)


class UserDirectory:
    """
    The GitLab users, fetched on first access and kept for the lifetime of
    the directory.

    ``fetch_page(page, per_page)`` returns one page of RemoteUser records.
    At most ``max_pages`` pages are requested. Paging stops at the first
    page that is not full, and also as soon as the administrator account
    shows up: GitLab lists users newest first, so the administrator is
    normally the last user listed. The latter is only a heuristic; if the
    administrator shows up earlier, users after it are missing.
    """

    def __init__(self, fetch_page, page_size=USER_FETCH_PAGE_SIZE, max_pages=USER_FETCH_MAX_PAGES):
        self._fetch_page = fetch_page
        self.page_size = page_size
        self.max_pages = max_pages
        self._users = None

    @property
    def loaded(self):
        return self._users is not None

    def invalidate(self):
        self._users = None

    def refresh(self):
        users = {}
        for page in range(1, self.max_pages + 1):
            records = self._fetch_page(page, self.page_size)
            for user in records:
                users[user.username] = user
            if len(records) < self.page_size:
                break
            if any(user.id == ADMINISTRATOR_ID for user in records):
                log.debug('Administrator seen on page %d, assuming all users were fetched' % page)
                break
        else:
            log.warning('Stopped fetching GitLab users after %d pages, the user list may be incomplete' % self.max_pages)
        log.debug('Fetched %d GitLab users' % len(users))
        self._users = users

    def users(self):
        if self._users is None:
            self.refresh()
        return self._users

    def get(self, username):
        return self.users().get(username)


class UserResolver:
    """
    Map Trac usernames to GitLab users.

    A Trac username listed in ``mapping`` is looked up under the mapped
    GitLab username, any other name is looked up unchanged. Names that do
    not resolve are counted in ``unresolved``.
    """

    def __init__(self, directory, mapping=None):
        self.directory = directory
        self.mapping = dict(mapping or {})
        self.unresolved = defaultdict(lambda: 0)

    def resolve(self, trac_username):
        if not trac_username:
            return None
        lookup = self.mapping.get(trac_username, trac_username)
        user = self.directory.get(lookup)
        if user is None:
            self.unresolved[trac_username] += 1
        return user

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

import gitlab
from gitlab.exceptions import GitlabError

from users import RemoteUser

log = logging.getLogger("trac_to_gitlab")

# GitLab answers 404 for projects the impersonated user cannot see
AUTHORIZATION_FAILURE_CODES = (401, 403, 404)


def is_authorization_error(e):
    return isinstance(e, GitlabError) and e.response_code in AUTHORIZATION_FAILURE_CODES


def with_impersonation_fallback(action, sudo, is_retryable=is_authorization_error):
    """
    Call ``action(sudo)`` and, if that fails with an error accepted by
    ``is_retryable``, call ``action(None)`` once more.

    ``action`` performs the request, as the user ``sudo`` if it is not None
    and as the owner of the token otherwise. Without ``sudo`` there is
    nothing to fall back to and ``action`` is called exactly once.
    """
    if sudo is None:
        return action(None)
    try:
        return action(sudo)
    except GitlabError as e:
        if not is_retryable(e):
            raise
        log.warning('Request as user %s was refused (%s), retrying as token owner' % (sudo, e.error_message))
        return action(None)


def _iso(time):
    if time is None:
        return None
    return time.isoformat() + 'Z' if time.tzinfo is None else time.isoformat()


class GitLabSink:
    """
    Creates issues and notes in GitLab projects.

    With ``is_admin``, the token belongs to an administrator and requests
    are made on behalf of the original authors (sudo); when GitLab refuses
    that, the request is repeated as the administrator.
    """

    def __init__(self, url, token, is_admin=False, ssl_verify=True, gl=None):
        self.url = url.rstrip('/')
        self.is_admin = is_admin
        if gl is None:
            gl = gitlab.Gitlab(self.url, private_token=token, ssl_verify=ssl_verify)
        self.gl = gl
        self._projects = {}

    def project(self, project):
        if project not in self._projects:
            self._projects[project] = self.gl.projects.get(project, lazy=True)
        return self._projects[project]

    def list_users(self, page, per_page):
        users = self.gl.users.list(page=page, per_page=per_page)
        return [RemoteUser(id=u.id, username=u.username, attributes=u.attributes) for u in users]

    def issue_url(self, project, issue):
        return '%s/%s/-/issues/%s' % (self.url, project, issue.iid)

    def _sudo(self, author_id):
        return author_id if self.is_admin else None

    def create_issue(self, project, title, description, assignee_id=None, author_id=None, labels='', created_at=None):
        """
        Create an issue and return it.

        ``author_id`` and ``created_at`` only take effect in admin mode.
        """
        issue_data = {
            'title': title,
            'description': description,
            'labels': labels,
        }
        if assignee_id is not None:
            issue_data['assignee_ids'] = [assignee_id]
        if self.is_admin and created_at is not None:
            issue_data['created_at'] = _iso(created_at)

        def create(sudo):
            if sudo is None:
                return self.project(project).issues.create(issue_data)
            return self.project(project).issues.create(issue_data, sudo=sudo)

        issue = with_impersonation_fallback(create, self._sudo(author_id))
        log.debug('  created issue %s' % issue.iid)
        return issue

    def create_note(self, project, issue_iid, text, author_id=None, created_at=None):
        note_data = {'body': text}
        if self.is_admin and created_at is not None:
            note_data['created_at'] = _iso(created_at)
        issue = self.project(project).issues.get(issue_iid, lazy=True)

        def create(sudo):
            if sudo is None:
                return issue.notes.create(note_data)
            return issue.notes.create(note_data, sudo=sudo)

        return with_impersonation_fallback(create, self._sudo(author_id))

"""
Tests for creating GitLab issues and notes
"""

from datetime import datetime
from unittest.mock import Mock

import pytest
from gitlab.exceptions import GitlabCreateError, GitlabError

from gitlab_sink import GitLabSink, is_authorization_error, with_impersonation_fallback
from users import RemoteUser


def refused(code):
    return GitlabCreateError(error_message='%d refused' % code, response_code=code)


class TestImpersonationFallback:

    @pytest.mark.parametrize('code', [401, 403, 404])
    def test_authorization_errors(self, code):
        assert is_authorization_error(refused(code))

    @pytest.mark.parametrize('code', [400, 409, 500, None])
    def test_other_errors(self, code):
        assert not is_authorization_error(GitlabError('boom', response_code=code))

    def test_success_as_author(self):
        action = Mock(return_value='created')
        assert with_impersonation_fallback(action, 7) == 'created'
        action.assert_called_once_with(7)

    def test_without_sudo_called_once(self):
        action = Mock(side_effect=refused(403))
        with pytest.raises(GitlabCreateError):
            with_impersonation_fallback(action, None)
        action.assert_called_once_with(None)

    def test_retry_without_sudo_on_authorization_error(self, caplog):
        action = Mock(side_effect=[refused(403), 'created'])
        assert with_impersonation_fallback(action, 7) == 'created'
        assert [c.args for c in action.call_args_list] == [(7,), (None,)]
        assert 'retrying as token owner' in caplog.text

    def test_second_failure_propagates(self):
        action = Mock(side_effect=[refused(403), refused(403)])
        with pytest.raises(GitlabCreateError):
            with_impersonation_fallback(action, 7)
        assert action.call_count == 2

    def test_other_error_not_retried(self):
        action = Mock(side_effect=refused(500))
        with pytest.raises(GitlabCreateError):
            with_impersonation_fallback(action, 7)
        action.assert_called_once_with(7)

    def test_custom_classifier(self):
        action = Mock(side_effect=[refused(500), 'created'])
        assert with_impersonation_fallback(action, 7, is_retryable=lambda e: True) == 'created'


class TestGitLabSink:

    def setup_method(self) -> None:
        self.gl = Mock()
        self.project = self.gl.projects.get.return_value
        self.issue = Mock(id=1001, iid=12)
        self.project.issues.create.return_value = self.issue

    def test_create_issue(self):
        sink = GitLabSink('https://gitlab.example.org/', 'token', gl=self.gl)
        issue = sink.create_issue('group/project', 'Title', 'Body', assignee_id=5, author_id=6, labels='bug,core')

        assert issue is self.issue
        self.gl.projects.get.assert_called_once_with('group/project', lazy=True)
        self.project.issues.create.assert_called_once_with(
            {'title': 'Title', 'description': 'Body', 'labels': 'bug,core', 'assignee_ids': [5]})
        assert sink.issue_url('group/project', issue) == 'https://gitlab.example.org/group/project/-/issues/12'

    def test_create_issue_without_assignee(self):
        sink = GitLabSink('https://gitlab.example.org', 'token', gl=self.gl)
        sink.create_issue('group/project', 'Title', 'Body')
        data = self.project.issues.create.call_args.args[0]
        assert 'assignee_ids' not in data

    def test_create_issue_as_author_in_admin_mode(self):
        sink = GitLabSink('https://gitlab.example.org', 'token', is_admin=True, gl=self.gl)
        sink.create_issue('group/project', 'Title', 'Body', author_id=6,
                          created_at=datetime(2014, 3, 1, 12, 30))
        args, kwargs = self.project.issues.create.call_args
        assert kwargs == {'sudo': 6}
        assert args[0]['created_at'] == '2014-03-01T12:30:00Z'

    def test_create_issue_falls_back_to_admin(self):
        self.project.issues.create.side_effect = [refused(403), self.issue]
        sink = GitLabSink('https://gitlab.example.org', 'token', is_admin=True, gl=self.gl)
        assert sink.create_issue('group/project', 'Title', 'Body', author_id=6) is self.issue
        first, second = self.project.issues.create.call_args_list
        assert first.kwargs == {'sudo': 6}
        assert second.kwargs == {}

    def test_create_issue_other_failure_propagates(self):
        self.project.issues.create.side_effect = refused(500)
        sink = GitLabSink('https://gitlab.example.org', 'token', is_admin=True, gl=self.gl)
        with pytest.raises(GitlabCreateError):
            sink.create_issue('group/project', 'Title', 'Body', author_id=6)
        assert self.project.issues.create.call_count == 1

    def test_no_sudo_without_admin_mode(self):
        sink = GitLabSink('https://gitlab.example.org', 'token', gl=self.gl)
        sink.create_issue('group/project', 'Title', 'Body', author_id=6,
                          created_at=datetime(2014, 3, 1, 12, 30))
        args, kwargs = self.project.issues.create.call_args
        assert kwargs == {}
        assert 'created_at' not in args[0]

    def test_create_note(self):
        lazy_issue = self.project.issues.get.return_value
        sink = GitLabSink('https://gitlab.example.org', 'token', gl=self.gl)
        sink.create_note('group/project', 12, 'A comment', author_id=6)
        self.project.issues.get.assert_called_once_with(12, lazy=True)
        lazy_issue.notes.create.assert_called_once_with({'body': 'A comment'})

    def test_create_note_falls_back_to_admin(self):
        lazy_issue = self.project.issues.get.return_value
        lazy_issue.notes.create.side_effect = [refused(404), Mock()]
        sink = GitLabSink('https://gitlab.example.org', 'token', is_admin=True, gl=self.gl)
        sink.create_note('group/project', 12, 'A comment', author_id=6)
        first, second = lazy_issue.notes.create.call_args_list
        assert first.kwargs == {'sudo': 6}
        assert second.kwargs == {}

    def test_project_looked_up_once(self):
        sink = GitLabSink('https://gitlab.example.org', 'token', gl=self.gl)
        sink.create_issue('group/project', 'One', 'Body')
        sink.create_issue('group/project', 'Two', 'Body')
        assert self.gl.projects.get.call_count == 1

    def test_list_users(self):
        self.gl.users.list.return_value = [Mock(id=3, username='carol', attributes={'id': 3, 'username': 'carol'})]
        sink = GitLabSink('https://gitlab.example.org', 'token', gl=self.gl)
        assert sink.list_users(2, 100) == [RemoteUser(id=3, username='carol')]
        self.gl.users.list.assert_called_once_with(page=2, per_page=100)

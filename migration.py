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

"""
Migration of Trac tickets into GitLab issues.

For every ticket an issue is created, with owner and reporter mapped to
GitLab users, the description converted to Markdown and labels built from
the keywords; every comment of the ticket becomes a note on the issue.
"""

import logging
import re

from trac2markdown import translate
from users import UserDirectory, UserResolver

log = logging.getLogger("trac_to_gitlab")


def compose_labels(ticket, label_component=False, label_milestone=False, add_label=None):
    "Return the comma separated GitLab labels for ``ticket``"
    labels = ticket.keywords or ''
    extra = []
    if label_component:
        extra.append(ticket.component)
    if label_milestone:
        extra.append(ticket.milestone)
    if add_label:
        extra.append(add_label)
    for label in extra:
        if not label:
            continue
        labels += (',' if labels else '') + label
    return labels


def user_id(user):
    return user.id if user is not None else None


class Migration:
    """
    Migrates Trac tickets into a GitLab project.

    ``source`` provides the tickets (see ``trac_source.TracSource``),
    ``sink`` creates issues and notes (see ``gitlab_sink.GitLabSink``).
    The GitLab users are fetched through the sink the first time a Trac
    user has to be resolved, unless a ``resolver`` is passed in.
    """

    def __init__(self, config, source, sink, resolver=None):
        self.config = config
        self.source = source
        self.sink = sink
        if resolver is None:
            resolver = UserResolver(UserDirectory(sink.list_users), config.user_mapping)
        self.resolver = resolver

    def migrate_by_component(self, component, project, max_count=0):
        "Migrate the open tickets of the Trac component ``component``"
        tickets = self.source.list_open_by_component(component, max_count)
        return self.migrate(tickets, project, component)

    def migrate_by_query(self, query, project, max_count=0):
        "Migrate the tickets matching the Trac query ``query``"
        if max_count and not re.search(r'(^|&)max=', query):
            query += '&max=%d' % max_count
        tickets = self.source.list_by_query(query)
        return self.migrate(tickets, project, query)

    def description(self, ticket):
        description = translate(ticket.description, self.config.trac_url)
        if self.config.link_back:
            description += '\n\n---\n\nOriginal ticket: %s/ticket/%s' % (self.config.trac_url, ticket.id)
        return description

    def migrate(self, tickets, project, label):
        """
        Create an issue with notes for each ticket in ``tickets``.

        Returns a list of ``(ticket id, issue)`` pairs for the created
        issues, which is empty in a dry run. At most ``max_tickets`` of the
        configured tickets are visited.
        """
        config = self.config
        created = []
        log.info('Found %d tickets (%s)' % (len(tickets), label))
        for count, ticket in enumerate(tickets, start=1):
            assignee_id = user_id(self.resolver.resolve(ticket.owner))
            author_id = user_id(self.resolver.resolve(ticket.reporter))
            description = self.description(ticket)
            labels = compose_labels(ticket,
                                    label_component=config.label_component,
                                    label_milestone=config.label_milestone,
                                    add_label=config.add_label)

            if config.dry_run:
                log.info('%d Trac ticket #%s %s (%d notes)' % (count, ticket.id, ticket.summary, len(ticket.comments)))
            else:
                issue = self.sink.create_issue(project, ticket.summary, description,
                                               assignee_id=assignee_id,
                                               author_id=author_id,
                                               labels=labels,
                                               created_at=ticket.created_at)
                log.info('Created a GitLab issue #%s for Trac ticket #%s : %s'
                         % (issue.iid, ticket.id, self.sink.issue_url(project, issue)))
                self.migrate_comments(ticket, project, issue)
                created.append((ticket.id, issue))

            if config.max_tickets and count >= config.max_tickets:
                break
        return created

    def migrate_comments(self, ticket, project, issue):
        if not ticket.comments:
            return
        for comment in ticket.comments:
            self.sink.create_note(project, issue.iid,
                                  translate(comment.text, self.config.trac_url),
                                  author_id=user_id(self.resolver.resolve(comment.author)),
                                  created_at=comment.time)
        log.info('  Also created %d note(s)' % len(ticket.comments))

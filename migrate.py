#!/usr/bin/env python3
# vim: autoindent tabstop=4 shiftwidth=4 expandtab softtabstop=4 filetype=python fileencoding=utf-8
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
What
=====

 This script migrates tickets from trac to gitlab issues.

Requirements
==============

 * Python 3, python-gitlab, rich, diskcache
 * Trac with xmlrpc plugin enabled
 * GitLab

Example
==============

 migrate.py -t https://trac.example.org -g https://gitlab.example.org \\
     -k TOKEN -p group/project -c core -m alice=a.smith,bob=b.jones -l
"""

import argparse
import logging
import sys
from xmlrpc import client

import requests
from gitlab.exceptions import GitlabError

from gitlab_sink import GitLabSink
from migration import Migration
from migration_config import ConfigurationError, build_config, read_config_file
from trac_source import TracSource

__version__ = '1.0.0'

log = logging.getLogger("trac_to_gitlab")


def argument_parser():
    parser = argparse.ArgumentParser(prog='trac-to-gitlab',
                                     description='Migrate Trac tickets into GitLab issues.')
    parser.add_argument('-t', '--trac', help='Trac URL')
    parser.add_argument('-g', '--gitlab', help='GitLab URL')
    parser.add_argument('-k', '--token', help='GitLab API private token')
    parser.add_argument('-p', '--project', help='GitLab project to which the tickets should be migrated')

    # exactly one of these
    parser.add_argument('-c', '--component', help='Migrate open tickets of a specific Trac component')
    parser.add_argument('-q', '--query',
                        help='Migrate all tickets matching this Trac query (e.g. "id=1234" or "status=!closed&owner=alice")')

    parser.add_argument('-m', '--map',
                        help='Map of trac usernames to gitlab usernames in the format "tracUserA=gitUserX,tracUserB=gitUserY"')
    parser.add_argument('-a', '--admin', action='store_true', default=None,
                        help='The GitLab token is from an admin user, create issues and notes as their original authors where possible')
    parser.add_argument('-l', '--link', action='store_true', default=None,
                        help='Add a link back to the original Trac ticket to the migrated issue')
    parser.add_argument('--labelcomponent', action='store_true', default=None, help='Label issues with the Trac component')
    parser.add_argument('--labelmilestone', action='store_true', default=None, help='Label issues with the Trac milestone')
    parser.add_argument('--addlabel', help='Add another custom label to all issues')
    parser.add_argument('--maxtickets', type=int, help='Maximum number of tickets to migrate')
    parser.add_argument('--showonly', action='store_true', default=None, help='Show what would be done, do not create anything')

    parser.add_argument('--config', help='Read settings from this configuration file; options given on the command line take precedence')
    parser.add_argument('--trac-user', help='Trac username for authenticated access')
    parser.add_argument('--trac-password', help='Trac password for authenticated access')
    parser.add_argument('--no-ssl-verify', dest='ssl_verify', action='store_false', default=None,
                        help='Do not verify the SSL certificate of GitLab')
    parser.add_argument('--cache-dir', help='Cache Trac responses in this directory')
    parser.add_argument('--debug', action='store_true', help='Log debug messages')
    parser.add_argument('-v', '--version', action='version', version='Trac to GitLab v' + __version__)
    return parser


def merged_options(args):
    "Configuration file settings, overridden by the options given on the command line"
    options = read_config_file(args.config) if args.config else {}
    for name, value in vars(args).items():
        if value is not None:
            options[name] = value
    return options


def run(config, selector):
    source = TracSource(config.trac_url, config.trac_username, config.trac_password, cache_dir=config.cache_dir)
    sink = GitLabSink(config.gitlab_url, config.gitlab_token, is_admin=config.admin, ssl_verify=config.ssl_verify)
    migration = Migration(config, source, sink)
    try:
        if selector.component:
            migration.migrate_by_component(selector.component, selector.project, config.max_tickets)
        else:
            migration.migrate_by_query(selector.query, selector.project, config.max_tickets)
    finally:
        unresolved = migration.resolver.unresolved
        print(f'Unmapped users: {sorted(unresolved.items(), key=lambda x: -x[1])}')
    return migration


def main(argv=None):
    parser = argument_parser()
    args = parser.parse_args(argv)

    from rich.logging import RichHandler
    FORMAT = "%(message)s"
    logging.basicConfig(
        level="DEBUG" if args.debug else "INFO", format=FORMAT, datefmt="[%X]", handlers=[RichHandler()]
    )

    try:
        config, selector = build_config(merged_options(args))
    except ConfigurationError as e:
        parser.error(str(e))

    try:
        run(config, selector)
    except (GitlabError, requests.exceptions.RequestException) as e:
        log.error('GitLab Error: %s' % e)
        return 1
    except (client.Fault, client.ProtocolError, OSError) as e:
        log.error('Trac Error: %s' % e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

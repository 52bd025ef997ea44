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

import ast
import configparser
from dataclasses import dataclass, field
from typing import NamedTuple, Optional


class ConfigurationError(ValueError):
    pass


default_config = {
    'ssl_verify': 'yes',
    'admin': 'false',
    'link': 'false',
    'label_component': 'false',
    'label_milestone': 'false',
    'dry_run': 'false',
}


@dataclass(frozen=True)
class MigrationConfig:
    trac_url: str
    gitlab_url: str
    gitlab_token: str = field(repr=False)
    trac_username: Optional[str] = None
    trac_password: Optional[str] = field(default=None, repr=False)
    ssl_verify: bool = True
    admin: bool = False
    link_back: bool = False
    label_component: bool = False
    label_milestone: bool = False
    add_label: Optional[str] = None
    max_tickets: int = 0
    dry_run: bool = False
    user_mapping: dict = field(default_factory=dict)
    cache_dir: Optional[str] = None


class Selector(NamedTuple):
    "Which tickets to migrate, and where to"
    project: str
    component: Optional[str] = None
    query: Optional[str] = None


def parse_user_mapping(mapping):
    """
    Parse a user mapping of the form ``"tracUserA=gitUserX,tracUserB=gitUserY"``.
    """
    users_map = {}
    for item in mapping.split(','):
        item = item.strip()
        if not item:
            continue
        names = item.split('=')
        if len(names) != 2 or not names[0].strip() or not names[1].strip():
            raise ConfigurationError("Invalid format for 'map' option: %r" % item)
        users_map[names[0].strip()] = names[1].strip()
    if not users_map:
        raise ConfigurationError("Invalid format for 'map' option: %r" % mapping)
    return users_map


def read_config_file(path):
    """
    Read the settings of an INI style configuration file into a flat dict
    using the names of the command line options.
    """
    config = configparser.ConfigParser(default_config, interpolation=None)
    if not config.read(path):
        raise ConfigurationError('Cannot read configuration file %s' % path)

    def get(section, option):
        if config.has_section(section) and config.has_option(section, option):
            return config.get(section, option)
        return None

    def getboolean(section, option):
        if not config.has_section(section):
            return False
        try:
            return config.getboolean(section, option)
        except ValueError as e:
            raise ConfigurationError('%s.%s: %s' % (section, option, e))

    settings = {
        'trac': get('source', 'url'),
        'trac_user': get('source', 'username'),
        'trac_password': get('source', 'password'),
        'gitlab': get('target', 'url'),
        'token': get('target', 'token'),
        'project': get('target', 'project_name'),
        'component': get('issues', 'component'),
        'query': get('issues', 'query'),
        'addlabel': get('issues', 'add_label'),
        'cache_dir': get('cache', 'dir'),
        'admin': getboolean('issues', 'admin'),
        'link': getboolean('issues', 'link'),
        'labelcomponent': getboolean('issues', 'label_component'),
        'labelmilestone': getboolean('issues', 'label_milestone'),
        'showonly': getboolean('issues', 'dry_run'),
    }
    if config.has_section('target'):
        settings['ssl_verify'] = getboolean('target', 'ssl_verify')

    usernames = get('target', 'usernames')
    if usernames:
        try:
            users_map = ast.literal_eval(usernames)
        except (ValueError, SyntaxError) as e:
            raise ConfigurationError('target.usernames: %s' % e)
        if not isinstance(users_map, dict):
            raise ConfigurationError('target.usernames must be a dictionary')
        settings['usernames'] = users_map

    max_tickets = get('issues', 'max_tickets')
    if max_tickets:
        try:
            settings['maxtickets'] = int(max_tickets)
        except ValueError:
            raise ConfigurationError('issues.max_tickets must be a number, not %r' % max_tickets)
    return settings


def build_config(options):
    """
    Validate the merged settings ``options`` (a dict keyed by command line
    option names) and return ``(MigrationConfig, Selector)``.
    """
    for name in ('trac', 'gitlab', 'token', 'project'):
        if not options.get(name):
            raise ConfigurationError("Option '%s' must have a value" % name)
    component = options.get('component')
    query = options.get('query')
    if not component and not query:
        raise ConfigurationError("One of 'component' or 'query' must have a value")
    if component and query:
        raise ConfigurationError("Only one of 'component' or 'query' may have a value")

    max_tickets = options.get('maxtickets') or 0
    if max_tickets < 0:
        raise ConfigurationError("Option 'maxtickets' must not be negative")

    user_mapping = dict(options.get('usernames') or {})
    if options.get('map'):
        user_mapping.update(parse_user_mapping(options['map']))

    config = MigrationConfig(trac_url=options['trac'].rstrip('/'),
                             gitlab_url=options['gitlab'].rstrip('/'),
                             gitlab_token=options['token'],
                             trac_username=options.get('trac_user'),
                             trac_password=options.get('trac_password'),
                             ssl_verify=options.get('ssl_verify', True),
                             admin=bool(options.get('admin')),
                             link_back=bool(options.get('link')),
                             label_component=bool(options.get('labelcomponent')),
                             label_milestone=bool(options.get('labelmilestone')),
                             add_label=options.get('addlabel') or None,
                             max_tickets=max_tickets,
                             dry_run=bool(options.get('showonly')),
                             user_mapping=user_mapping,
                             cache_dir=options.get('cache_dir'))
    return config, Selector(project=options['project'], component=component, query=query)

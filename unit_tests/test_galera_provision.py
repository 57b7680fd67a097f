import unittest

import galera_provision
from galera_config import ClusterConfig, ConfigError, parse_nodes
from galera_host import ProvisioningError
from galera_platform import UnsupportedPlatformError
from galera_provision import (
    ABORTED,
    CONFIG_WRITTEN,
    DATA_INITIALIZED,
    DIRECTORIES_READY,
    HARDENED,
    PACKAGE_TRANSITION,
    SERVICE_RUNNING,
    VALIDATING,
    NodeCredentials,
    ProvisionedNode,
    ProvisionSequencer,
)

from test_utils import CharmTestCase

UBUNTU = ('ubuntu', '14.04', 'x86_64')
CREDENTIALS = NodeCredentials('rootpw', 'wsreppw')


class FakeHost(object):
    '''In-memory stand-in for every host collaborator of the sequencer'''

    def __init__(self, installed=('mysql-server',)):
        self.installed = set(installed)
        self.paths = set()
        self.files = {}
        self.running = False
        self.root_password = ''
        self.calls = []

    # packages
    def remove(self, name):
        if name not in self.installed:
            return False
        self.calls.append(('remove', name))
        self.installed.remove(name)
        return True

    def install(self, name, source=None):
        if name in self.installed:
            return False
        self.calls.append(('install', name, source))
        self.installed.add(name)
        return True

    # artifacts
    def fetch_if_missing(self, url, dest, checksum=None):
        if dest in self.paths:
            return False
        self.calls.append(('download', url, dest, checksum))
        self.paths.add(dest)
        return True

    # services
    def ensure_running(self, name):
        if self.running:
            return False
        self.calls.append(('start', name))
        self.running = True
        return True

    def restart(self, name):
        self.calls.append(('restart', name))

    def reload(self, name):
        self.calls.append(('reload', name))

    # files
    def exists(self, path):
        return path in self.paths

    def ensure_directory(self, path, owner, group, recursive=True,
                         perms=0o755):
        created = path not in self.paths
        if created:
            self.calls.append(('mkdir', path, owner, group))
        self.paths.add(path)
        return created

    def write_file(self, path, content, owner, group, perms):
        changed = self.files.get(path, (None,))[0] != content
        if changed:
            self.calls.append(('write', path, owner, group, perms))
        self.files[path] = (content, owner, group, perms)
        self.paths.add(path)
        return changed

    # commands
    def run(self, cmd):
        self.calls.append(('run', cmd))
        if cmd[0] == 'mysql_install_db':
            self.paths.add('/var/lib/mysql/mysql/user.frm')

    # db
    def accepts_login(self, credentials):
        return (credentials.user == 'root' and
                credentials.password == self.root_password)

    def execute_local(self, credentials, statement, params=None):
        if not self.accepts_login(credentials):
            raise ProvisioningError("Access denied for {}"
                                    .format(credentials.user))
        self.calls.append(('sql', statement, params))
        if statement == galera_provision.SQL_SET_ROOT_PASSWORD:
            self.root_password = params[0]
        return True

    def called(self, kind):
        return [call for call in self.calls if call[0] == kind]


def cluster_config(**kwargs):
    kwargs.setdefault('nodes', parse_nodes('10.0.0.1 10.0.0.2 10.0.0.3'))
    kwargs.setdefault('init_node', '10.0.0.1')
    return ClusterConfig('test_cluster', **kwargs)


class ProvisionedNodeTests(CharmTestCase):

    def setUp(self):
        super(ProvisionedNodeTests, self).setUp(galera_provision, ['log'])

    def test_advance_in_order(self):
        node = ProvisionedNode(CREDENTIALS)
        self.assertEqual(node.phase, VALIDATING)
        for phase in galera_provision.PHASES[1:]:
            self.assertFalse(node.terminal)
            node.advance(phase)
            self.assertEqual(node.phase, phase)
        self.assertTrue(node.terminal)

    def test_advance_skipping_phase(self):
        node = ProvisionedNode(CREDENTIALS)
        self.assertRaises(ValueError, node.advance, DIRECTORIES_READY)
        self.assertEqual(node.phase, VALIDATING)

    def test_advance_from_hardened(self):
        node = ProvisionedNode(CREDENTIALS)
        node.phase = HARDENED
        self.assertRaises(ValueError, node.advance, VALIDATING)

    def test_abort(self):
        node = ProvisionedNode(CREDENTIALS)
        node.abort('unsupported')
        self.assertEqual(node.phase, ABORTED)
        self.assertTrue(node.terminal)
        self.assertRaises(ValueError, node.advance, PACKAGE_TRANSITION)

    def test_abort_after_validation(self):
        node = ProvisionedNode(CREDENTIALS)
        node.advance(PACKAGE_TRANSITION)
        self.assertRaises(ValueError, node.abort, 'too late')
        self.assertEqual(node.phase, PACKAGE_TRANSITION)


class ArtifactUrlTests(unittest.TestCase):

    def test_artifact_url(self):
        self.assertEqual(
            galera_provision.artifact_url('http://mirror/galera/', 'g.deb'),
            'http://mirror/galera/g.deb')
        self.assertEqual(
            galera_provision.artifact_url('http://mirror/galera', 'g.deb'),
            'http://mirror/galera/g.deb')


class ProvisionSequencerTests(CharmTestCase):

    def setUp(self):
        super(ProvisionSequencerTests, self).setUp(galera_provision, ['log'])
        self.host = FakeHost()

    def sequencer(self, config=None, platform_facts=UBUNTU,
                  credentials=CREDENTIALS, address='10.0.0.1'):
        return ProvisionSequencer(
            config or cluster_config(), platform_facts, address, credentials,
            packages=self.host, artifacts=self.host, services=self.host,
            files=self.host, commands=self.host, db=self.host)

    def test_fresh_node(self):
        node = self.sequencer().run()
        self.assertEqual(node.phase, HARDENED)
        self.assertFalse(node.data_dir_present)

        self.assertEqual(self.host.called('remove'),
                         [('remove', 'mysql-server')])
        self.assertEqual(self.host.called('download'), [
            ('download',
             'https://launchpad.net/galera/2.x/23.2.2/+download/'
             'galera-23.2.2-amd64.deb',
             '/var/cache/galera/galera-23.2.2-amd64.deb', None),
            ('download',
             'https://launchpad.net/codership-mysql/5.5/5.5.28-23.7/'
             '+download/mysql-server-wsrep-5.5.28-23.7-amd64.deb',
             '/var/cache/galera/mysql-server-wsrep-5.5.28-23.7-amd64.deb',
             None),
        ])
        installs = self.host.called('install')
        self.assertIn(('install', 'galera',
                       '/var/cache/galera/galera-23.2.2-amd64.deb'),
                      installs)
        self.assertIn(('install', 'mysql-server-wsrep',
                       '/var/cache/galera/'
                       'mysql-server-wsrep-5.5.28-23.7-amd64.deb'),
                      installs)
        self.assertIn(('install', 'rsync', None), installs)

        self.assertEqual(
            [call[1] for call in self.host.called('mkdir')],
            ['/var/run/mysqld', '/var/log/mysql', '/etc/mysql/conf.d',
             '/var/lib/mysql'])
        self.assertEqual(self.host.called('write'), [
            ('write', '/etc/mysql/my.cnf', 'root', 'root', 0o644),
            ('write', '/etc/mysql/conf.d/wsrep.cnf', 'root', 'mysql', 0o640),
        ])
        self.assertEqual(self.host.called('run'), [
            ('run', ['mysql_install_db', '--user=mysql',
                     '--datadir=/var/lib/mysql'])])
        self.assertEqual(self.host.called('start'), [('start', 'mysql')])
        self.assertEqual(self.host.called('sql'), [
            ('sql', galera_provision.SQL_SET_ROOT_PASSWORD, ('rootpw',)),
            ('sql', galera_provision.SQL_DELETE_ANONYMOUS_USERS, None),
            ('sql', galera_provision.SQL_FLUSH_PRIVILEGES, None),
            ('sql', galera_provision.SQL_GRANT_WSREP_USER,
             ('wsrep_sst', 'wsreppw')),
        ])
        # The service was started with the new configuration.
        self.assertFalse(self.host.called('restart'))
        self.assertFalse(self.host.called('reload'))

    def test_install_order(self):
        self.sequencer().run()
        kinds = [call[0] for call in self.host.calls]
        self.assertLess(kinds.index('remove'), kinds.index('install'))
        self.assertLess(kinds.index('install'), kinds.index('mkdir'))
        self.assertLess(kinds.index('write'), kinds.index('run'))
        self.assertLess(kinds.index('run'), kinds.index('start'))
        self.assertLess(kinds.index('start'), kinds.index('sql'))

    def test_rerun_is_noop(self):
        self.sequencer().run()
        self.host.calls = []
        node = self.sequencer().run()
        self.assertEqual(node.phase, HARDENED)
        self.assertTrue(node.data_dir_present)
        for kind in ('remove', 'install', 'download', 'mkdir', 'write',
                     'run', 'start', 'restart', 'reload'):
            self.assertEqual(self.host.called(kind), [], kind)
        statements = [call[1] for call in self.host.called('sql')]
        self.assertNotIn(galera_provision.SQL_SET_ROOT_PASSWORD, statements)
        self.assertIn(galera_provision.SQL_GRANT_WSREP_USER, statements)

    def _change_config(self, reload_action):
        self.sequencer().run()
        self.host.calls = []
        config = cluster_config(reload_action=reload_action,
                                tunables={'max_connections': '50'})
        return self.sequencer(config).run()

    def test_config_change_restarts_once(self):
        self._change_config('restart')
        self.assertEqual(len(self.host.called('write')), 1)
        self.assertEqual(self.host.called('restart'), [('restart', 'mysql')])
        self.assertFalse(self.host.called('reload'))
        self.assertEqual(self.host.calls[-1], ('restart', 'mysql'))

    def test_config_change_reloads(self):
        self._change_config('reload')
        self.assertEqual(self.host.called('reload'), [('reload', 'mysql')])
        self.assertFalse(self.host.called('restart'))

    def test_config_change_no_action(self):
        self._change_config('none')
        self.assertEqual(len(self.host.called('write')), 1)
        self.assertFalse(self.host.called('restart'))
        self.assertFalse(self.host.called('reload'))

    def test_unchanged_config_on_stopped_service(self):
        self.sequencer().run()
        self.host.running = False
        self.host.calls = []
        self.sequencer().run()
        self.assertEqual(self.host.called('start'), [('start', 'mysql')])
        self.assertFalse(self.host.called('restart'))

    def test_unsupported_platform_aborts(self):
        sequencer = self.sequencer(platform_facts=('windows', '10',
                                                   'x86_64'))
        self.assertRaises(UnsupportedPlatformError, sequencer.run)
        self.assertEqual(sequencer.node.phase, ABORTED)
        self.assertEqual(self.host.calls, [])

    def test_unknown_arch_aborts(self):
        sequencer = self.sequencer(platform_facts=('ubuntu', '14.04',
                                                   'sparc'))
        self.assertRaises(UnsupportedPlatformError, sequencer.run)
        self.assertEqual(sequencer.node.phase, ABORTED)

    def test_missing_password_aborts(self):
        sequencer = self.sequencer(
            config=cluster_config(generate_passwords=False),
            credentials=NodeCredentials(None, 'wsreppw'))
        with self.assertRaises(ConfigError) as ctx:
            sequencer.run()
        self.assertIn('root-password', str(ctx.exception))
        self.assertIn('generate-passwords', str(ctx.exception))
        self.assertEqual(sequencer.node.phase, ABORTED)
        self.assertEqual(self.host.calls, [])

    def test_service_failure_halts(self):
        def fail(name):
            raise ProvisioningError("Failed to start service mysql")

        self.host.ensure_running = fail
        sequencer = self.sequencer()
        self.assertRaises(ProvisioningError, sequencer.run)
        self.assertEqual(sequencer.node.phase, DATA_INITIALIZED)
        self.assertFalse(self.host.called('sql'))
        self.assertFalse(self.host.called('restart'))

    def test_install_failure_halts(self):
        def fail(name, source=None):
            raise ProvisioningError("Failed to install package")

        self.host.install = fail
        sequencer = self.sequencer()
        self.assertRaises(ProvisioningError, sequencer.run)
        self.assertEqual(sequencer.node.phase, PACKAGE_TRANSITION)
        self.assertFalse(self.host.called('write'))

    def test_harden_wrong_root_password(self):
        self.host.root_password = 'something-else'
        sequencer = self.sequencer()
        self.assertRaises(ProvisioningError, sequencer.run)
        self.assertEqual(sequencer.node.phase, SERVICE_RUNNING)

    def test_directories_deduplicated(self):
        sequencer = self.sequencer(config=cluster_config(
            log_dir='/var/log/mysql', slow_query_log='/var/log/mysql/s.log'))
        sequencer.validate()
        self.assertEqual(sequencer.directories(), [
            '/var/run/mysqld', '/var/log/mysql', '/etc/mysql/conf.d',
            '/var/lib/mysql'])

    def test_config_paths_rhel(self):
        sequencer = self.sequencer(platform_facts=('centos', '6.5',
                                                   'x86_64'))
        sequencer.validate()
        self.assertEqual(sequencer.config_paths(),
                         ('/etc/my.cnf', '/etc/mysql/conf.d/wsrep.cnf'))

    def test_render_masks_secrets(self):
        sequencer = self.sequencer()
        sequencer.validate()
        _, wsrep_cnf = sequencer.render(mask_secrets=True)
        self.assertNotIn('wsreppw', wsrep_cnf)
        self.assertIn('wsrep_sst_auth=wsrep_sst:********',
                      wsrep_cnf.splitlines())
        _, wsrep_cnf = sequencer.render()
        self.assertIn('wsrep_sst_auth=wsrep_sst:wsreppw',
                      wsrep_cnf.splitlines())

    def test_phases_reached(self):
        sequencer = self.sequencer()
        sequencer.validate()
        self.assertEqual(sequencer.node.phase, PACKAGE_TRANSITION)
        sequencer.replace_packages()
        sequencer.prepare_directories()
        self.assertEqual(sequencer.node.phase, DIRECTORIES_READY)
        sequencer.write_config()
        self.assertEqual(sequencer.node.phase, CONFIG_WRITTEN)
        self.assertEqual(sequencer.pending_action, 'restart')
        sequencer.initialize_data()
        sequencer.start_service()
        self.assertIsNone(sequencer.pending_action)

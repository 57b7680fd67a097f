''' Cluster configuration model for the galera charm '''
import collections
import collections.abc
import re
import types

import yaml

RELOAD_ACTIONS = ('restart', 'reload', 'none')

GALERA_DOWNLOAD_ROOT = 'https://launchpad.net/galera/2.x/23.2.2/+download/'
SERVER_DOWNLOAD_ROOT = ('https://launchpad.net/codership-mysql/5.5/'
                        '5.5.28-23.7/+download/')

# mysqld settings rendered into my.cnf unless overridden by the 'tunables'
# option.
DEFAULT_TUNABLES = {
    'back_log': '128',
    'key_buffer': '256M',
    'max_allowed_packet': '16M',
    'max_connections': '800',
    'max_heap_table_size': '32M',
    'net_read_timeout': '30',
    'net_write_timeout': '30',
    'table_cache': '128',
    'thread_cache_size': '8',
    'thread_stack': '256K',
    'wait_timeout': '180',
    'innodb_buffer_pool_size': '256M',
    'innodb_flush_log_at_trx_commit': '1',
    'innodb_log_file_size': '5M',
    'long_query_time': '2',
}


class GaleraError(Exception):
    '''Base class for errors raised while provisioning a galera node'''
    pass


class ConfigError(GaleraError):
    '''Raised when charm options describe an invalid cluster'''
    pass


ClusterNode = collections.namedtuple('ClusterNode', ['address', 'position'])


_CLUSTER_FIELDS = [
    'cluster_name',
    'nodes',
    'init_node',
    'sst_method',
    'port',
    'sst_receive_interface',
    'slave_threads',
    'certify_non_pk',
    'max_ws_rows',
    'max_ws_size',
    'retry_autocommit',
    'auto_increment_control',
    'causal_reads',
    'debug',
    'wsrep_user',
    'tunables',
    'reload_action',
    'server_packages',
    'galera_download_root',
    'server_download_root',
    'galera_checksum',
    'server_checksum',
    'cache_dir',
    'data_dir',
    'log_dir',
    'pid_file',
    'slow_query_log',
    'generate_passwords',
]

# mysqld option names: letters, digits, dashes and underscores.
_TUNABLE_KEY = re.compile(r'^[A-Za-z0-9_-]+$')

# Never set through tunables; peers must reach mysqld on every interface.
FORBIDDEN_TUNABLES = ('bind_address',)

_NON_NEGATIVE = ('slave_threads', 'max_ws_rows', 'max_ws_size',
                 'retry_autocommit')


def parse_nodes(value):
    """Split a node option into an ordered list of ClusterNode.

    Addresses may be separated by commas and/or whitespace.

    @param value: option string, list of addresses or None
    @returns list of ClusterNode
    """
    if not value:
        return []
    if isinstance(value, str):
        addresses = [a for a in re.split(r'[\s,]+', value) if a]
    else:
        addresses = [str(a).strip() for a in value if str(a).strip()]
    return [ClusterNode(address, i) for i, address in enumerate(addresses)]


def _tunable_key(key):
    '''Canonical mysqld option name: dashes as underscores, no loose_ prefix'''
    key = key.replace('-', '_')
    if key.startswith('loose_'):
        key = key[len('loose_'):]
    return key


def parse_tunables(value):
    """Parse the YAML 'tunables' option into a dict of strings.

    Keys are returned in their canonical form so that a tunable can never
    shadow one of the settings galera requires.

    @raises ConfigError for malformed entries and for bind-address
    @returns dict
    """
    if not value:
        return {}
    if isinstance(value, collections.abc.Mapping):
        parsed = value
    else:
        try:
            parsed = yaml.safe_load(value)
        except yaml.YAMLError as e:
            raise ConfigError("Invalid 'tunables' option: {}".format(e))
    if parsed is None:
        return {}
    if not isinstance(parsed, collections.abc.Mapping):
        raise ConfigError("The 'tunables' option must be a YAML mapping, "
                          "got: {!r}".format(value))

    tunables = {}
    for key, setting in parsed.items():
        key, setting = str(key).strip(), str(setting)
        if not _TUNABLE_KEY.match(key):
            raise ConfigError("Invalid tunable name {!r}".format(key))
        if '\n' in setting or '\r' in setting:
            raise ConfigError("Value of tunable {} must be a single line"
                              .format(key))
        name = _tunable_key(key)
        if name in FORBIDDEN_TUNABLES:
            raise ConfigError("Tunable {} cannot be set: galera nodes must "
                              "listen on all interfaces".format(key))
        if name in tunables:
            raise ConfigError("Tunable {} is set more than once".format(name))
        tunables[name] = setting
    return tunables


def _split_words(value):
    if not value:
        return ()
    return tuple(re.split(r'[\s,]+', value.strip()))


def _option(options, key, default=None):
    value = options.get(key)
    if value is None:
        return default
    return value


class ClusterConfig(collections.namedtuple('ClusterConfig',
                                           _CLUSTER_FIELDS)):
    """Validated, read-only settings for one node of a galera cluster.

    Every node of a cluster must be provisioned with the same node list and
    cluster name; that agreement is not something a single node can check,
    so only locally verifiable fields are validated here.
    """
    __slots__ = ()

    def __new__(cls, cluster_name, nodes, init_node=None, sst_method='rsync',
                port=4567, sst_receive_interface='eth0', slave_threads=1,
                certify_non_pk=True, max_ws_rows=131072,
                max_ws_size=1073741824, retry_autocommit=1,
                auto_increment_control=True, causal_reads=False,
                debug=False, wsrep_user='wsrep_sst', tunables=None,
                reload_action='restart', server_packages=('mysql-server',),
                galera_download_root=GALERA_DOWNLOAD_ROOT,
                server_download_root=SERVER_DOWNLOAD_ROOT,
                galera_checksum=None, server_checksum=None,
                cache_dir='/var/cache/galera', data_dir='/var/lib/mysql',
                log_dir='/var/log/mysql',
                pid_file='/var/run/mysqld/mysqld.pid',
                slow_query_log='/var/log/mysql/slow.log',
                generate_passwords=True):
        self = super(ClusterConfig, cls).__new__(
            cls, cluster_name, tuple(nodes), (init_node or '').strip() or None,
            sst_method, port, sst_receive_interface, slave_threads,
            certify_non_pk, max_ws_rows, max_ws_size, retry_autocommit,
            auto_increment_control, causal_reads, debug, wsrep_user,
            types.MappingProxyType(parse_tunables(tunables)), reload_action,
            tuple(server_packages),
            galera_download_root, server_download_root,
            galera_checksum or None, server_checksum or None, cache_dir,
            data_dir, log_dir, pid_file, slow_query_log, generate_passwords)
        self.validate()
        return self

    def validate(self):
        '''Raise ConfigError if the settings cannot describe a cluster'''
        if not self.nodes:
            raise ConfigError("The 'nodes' option must list the address of "
                              "every node in the cluster")
        addresses = self.addresses
        duplicates = sorted(set(a for a in addresses
                                if addresses.count(a) > 1))
        if duplicates:
            raise ConfigError("Duplicate addresses in 'nodes': {}"
                              .format(', '.join(duplicates)))
        if self.init_node is not None and self.init_node not in addresses:
            raise ConfigError("Initiator node '{}' is not one of the "
                              "configured nodes ({})"
                              .format(self.init_node, ', '.join(addresses)))
        if not self.cluster_name:
            raise ConfigError("The 'cluster-name' option must not be empty")
        if not self.sst_method:
            raise ConfigError("The 'sst-method' option must not be empty")
        if (isinstance(self.port, bool) or not isinstance(self.port, int) or
                not 0 < self.port < 65536):
            raise ConfigError("Invalid port {!r}: must be between 1 and "
                              "65535".format(self.port))
        for field in _NON_NEGATIVE:
            value = getattr(self, field)
            if not isinstance(value, int) or value < 0:
                raise ConfigError("Invalid {} {!r}: must be a non-negative "
                                  "integer".format(field, value))
        if self.reload_action not in RELOAD_ACTIONS:
            raise ConfigError("Invalid reload-action '{}': must be one of {}"
                              .format(self.reload_action,
                                      ', '.join(RELOAD_ACTIONS)))
        for field in ('galera_download_root', 'server_download_root'):
            if not getattr(self, field):
                raise ConfigError("The {} option must not be empty"
                                  .format(field.replace('_', '-')))

    @property
    def addresses(self):
        return [node.address for node in self.nodes]

    def mysqld_tunables(self):
        '''Default mysqld tunables merged with the configured ones'''
        tunables = dict(DEFAULT_TUNABLES)
        tunables['slow_query_log'] = '1'
        tunables['slow_query_log_file'] = self.slow_query_log
        tunables.update(self.tunables)
        return tunables

    @classmethod
    def from_options(cls, options):
        """Build a ClusterConfig from a charm option mapping.

        @param options: dict-like, as returned by hookenv.config()
        @raises ConfigError on invalid values
        @returns ClusterConfig
        """
        try:
            port = int(_option(options, 'port', 4567))
            numbers = {
                'slave_threads': int(_option(options, 'slave-threads', 1)),
                'max_ws_rows': int(_option(options, 'max-ws-rows', 131072)),
                'max_ws_size': int(_option(options, 'max-ws-size',
                                           1073741824)),
                'retry_autocommit': int(_option(options, 'retry-autocommit',
                                                1)),
            }
        except (TypeError, ValueError) as e:
            raise ConfigError("Invalid numeric option: {}".format(e))

        return cls(
            cluster_name=_option(options, 'cluster-name', ''),
            nodes=parse_nodes(options.get('nodes')),
            init_node=options.get('init-node'),
            sst_method=_option(options, 'sst-method', 'rsync'),
            port=port,
            sst_receive_interface=_option(options, 'sst-receive-interface',
                                          'eth0'),
            certify_non_pk=bool(_option(options, 'certify-non-pk', True)),
            auto_increment_control=bool(
                _option(options, 'auto-increment-control', True)),
            causal_reads=bool(_option(options, 'causal-reads', False)),
            debug=bool(_option(options, 'wsrep-debug', False)),
            wsrep_user=_option(options, 'wsrep-user', 'wsrep_sst'),
            tunables=options.get('tunables'),
            reload_action=_option(options, 'reload-action', 'restart'),
            server_packages=_split_words(
                _option(options, 'server-packages', 'mysql-server')),
            galera_download_root=_option(options, 'galera-download-root',
                                         GALERA_DOWNLOAD_ROOT),
            server_download_root=_option(options, 'server-download-root',
                                         SERVER_DOWNLOAD_ROOT),
            galera_checksum=options.get('galera-package-checksum'),
            server_checksum=options.get('server-package-checksum'),
            cache_dir=_option(options, 'cache-dir', '/var/cache/galera'),
            data_dir=_option(options, 'data-dir', '/var/lib/mysql'),
            log_dir=_option(options, 'log-dir', '/var/log/mysql'),
            pid_file=_option(options, 'pid-file',
                             '/var/run/mysqld/mysqld.pid'),
            slow_query_log=_option(options, 'slow-query-log',
                                   '/var/log/mysql/slow.log'),
            generate_passwords=bool(_option(options, 'generate-passwords',
                                            True)),
            **numbers)

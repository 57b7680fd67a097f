''' General utilities for galera '''
import os
from functools import partial

from charmhelpers.core.hookenv import (
    config,
    log,
    DEBUG,
    WARNING,
)
from charmhelpers.core.host import pwgen
from charmhelpers.core.templating import render
from charmhelpers.core.unitdata import kv

TEMPLATES_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'templates')

MY_CNF = 'my.cnf'
WSREP_CNF = 'wsrep.cnf'

MYSQL_PORT = 3306

# These settings are mandatory for galera multi-master replication and
# always replace whatever was configured.
ENFORCED_TUNABLES = (
    ('binlog_format', 'ROW'),
    ('innodb_autoinc_lock_mode', '2'),
    ('innodb_locks_unsafe_for_binlog', '1'),
    ('innodb_support_xa', '0'),
)

ROOT_PASSWORD_KEY = 'root-password'
WSREP_PASSWORD_KEY = 'wsrep-password'


def build_cluster_urls(nodes, port):
    """Build the wsrep_urls bootstrap descriptor for the cluster.

    Each node contributes a gcomm://<address>:<port> URL, in the configured
    order.  A bare gcomm:// is always appended: mysqld_safe tries every peer
    in turn and only initialises a new cluster when none of them answers, so
    the same value works on the initiator and on joining nodes.

    @param nodes: ordered list of ClusterNode
    @param port: galera group communication port
    @returns str
    """
    urls = ['gcomm://{}:{}'.format(node.address, port) for node in nodes]
    urls.append('gcomm://')
    return ','.join(urls)


def enforce_tunables(tunables):
    '''Return a copy of tunables with the galera settings forced on'''
    enforced = dict(tunables)
    for key, value in ENFORCED_TUNABLES:
        current = enforced.get(key)
        if current is not None and str(current) != value:
            log("Overriding {}={} with {}={}, required by galera"
                .format(key, current, key, value), level=WARNING)
        enforced[key] = value
    return enforced


def skip_federated(platform, version):
    """Determine whether the federated storage engine must be skipped.

    @param platform: platform name
    @param version: numeric platform version
    @returns boolean
    """
    platform = platform.lower()
    if platform in ('fedora', 'ubuntu', 'amazon'):
        return True
    elif platform in ('centos', 'redhat', 'scientific'):
        return float(version) < 6.0
    return False


def _render(source, context):
    return render(source, None, context, templates_dir=TEMPLATES_DIR)


def render_configs(cluster_config, profile, cluster_urls, skip_federated,
                   sst_receive_address, tunables, sst_auth=None):
    """Render the main mysql and the wsrep configuration files.

    Rendering is a pure function of its arguments; deciding whether to write
    the results and what to do when they change is up to the caller.

    @param cluster_config: ClusterConfig
    @param profile: PlatformProfile
    @param cluster_urls: output of build_cluster_urls()
    @param skip_federated: whether to disable the federated engine
    @param sst_receive_address: address this node receives SST on
    @param tunables: mysqld tunables, already passed through
                     enforce_tunables()
    @param sst_auth: optional Credentials for wsrep_sst_auth
    @returns (my.cnf content, wsrep.cnf content)
    """
    my_cnf = _render(MY_CNF, {
        'mysql_port': MYSQL_PORT,
        'socket': profile.socket,
        'pid_file': cluster_config.pid_file,
        'data_dir': cluster_config.data_dir,
        'confd_dir': profile.confd_dir,
        'wsrep_urls': cluster_urls,
        'skip_federated': skip_federated,
        'tunables': tunables,
    })
    wsrep_cnf = _render(WSREP_CNF, {
        'wsrep_provider': profile.wsrep_provider,
        'cluster_name': cluster_config.cluster_name,
        'port': cluster_config.port,
        'sst_method': cluster_config.sst_method,
        'sst_receive_address': sst_receive_address,
        'sst_auth': sst_auth,
        'slave_threads': cluster_config.slave_threads,
        'certify_non_pk': int(cluster_config.certify_non_pk),
        'max_ws_rows': cluster_config.max_ws_rows,
        'max_ws_size': cluster_config.max_ws_size,
        'retry_autocommit': cluster_config.retry_autocommit,
        'auto_increment_control': int(cluster_config.auto_increment_control),
        'causal_reads': int(cluster_config.causal_reads),
        'debug': int(cluster_config.debug),
    })
    return my_cnf, wsrep_cnf


def _get_password(key, generate=True):
    '''Retrieve named password

    A password already stored in the unit's kv store always wins so that
    credentials are never changed once the server has been hardened with
    them.  Otherwise the charm option is used or, if allowed, a new password
    is generated.  Whatever is chosen is persisted.

    @returns: str: named password or None if it is not set and may not be
                   generated
    '''
    kvstore = kv()
    _password = kvstore.get(key)
    if _password:
        return _password
    _password = config(key)
    if not _password and generate:
        log("Generating {}".format(key), level=DEBUG)
        _password = pwgen()
    if _password:
        kvstore.set(key=key, value=_password)
        kvstore.flush()
    return _password


root_password = partial(_get_password, ROOT_PASSWORD_KEY)

wsrep_password = partial(_get_password, WSREP_PASSWORD_KEY)

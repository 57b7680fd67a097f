''' Provisioning sequence for a single galera node

The sequence is safe to re-run at any point: each phase checks the state of
the host before acting, so a node that is already fully provisioned only
goes through the checks.
'''
import collections
import os

from charmhelpers.core.hookenv import (
    log,
    DEBUG,
    INFO,
    ERROR,
)

from galera_config import ConfigError
from galera_host import (
    ArtifactCache,
    Commands,
    Credentials,
    DatabaseClient,
    HostFiles,
    PackageManager,
    ServiceManager,
)
from galera_platform import (
    UnsupportedPlatformError,
    resolve_platform,
)
from galera_utils import (
    MY_CNF,
    WSREP_CNF,
    build_cluster_urls,
    enforce_tunables,
    render_configs,
    skip_federated,
)

VALIDATING = 'validating'
PACKAGE_TRANSITION = 'package-transition'
DIRECTORIES_READY = 'directories-ready'
CONFIG_WRITTEN = 'config-written'
DATA_INITIALIZED = 'data-initialized'
SERVICE_RUNNING = 'service-running'
HARDENED = 'hardened'
ABORTED = 'aborted'

PHASES = (
    VALIDATING,
    PACKAGE_TRANSITION,
    DIRECTORIES_READY,
    CONFIG_WRITTEN,
    DATA_INITIALIZED,
    SERVICE_RUNNING,
    HARDENED,
)

MYSQL_USER = 'mysql'
MYSQL_GROUP = 'mysql'
ROOT_GROUP = 'root'

# Present once mysql_install_db has populated the data directory.
SYSTEM_USER_TABLE = os.path.join('mysql', 'user.frm')

SQL_SET_ROOT_PASSWORD = "SET PASSWORD FOR 'root'@'localhost' = PASSWORD(%s)"
SQL_DELETE_ANONYMOUS_USERS = "DELETE FROM mysql.user WHERE user=''"
SQL_FLUSH_PRIVILEGES = "FLUSH PRIVILEGES"
SQL_GRANT_WSREP_USER = "GRANT ALL ON *.* TO %s@'%%' IDENTIFIED BY %s"

NodeCredentials = collections.namedtuple('NodeCredentials',
                                         ['root_password', 'wsrep_password'])


class ProvisionedNode(object):
    '''Tracks how far provisioning of this node has progressed'''

    def __init__(self, credentials):
        self.phase = VALIDATING
        self.credentials = credentials
        self.data_dir_present = None

    @property
    def terminal(self):
        return self.phase in (HARDENED, ABORTED)

    def advance(self, phase):
        if self.phase not in PHASES[:-1]:
            raise ValueError("Cannot leave terminal phase {}"
                             .format(self.phase))
        expected = PHASES[PHASES.index(self.phase) + 1]
        if phase != expected:
            raise ValueError("Cannot move from {} to {}"
                             .format(self.phase, phase))
        log("Provisioning phase {} -> {}".format(self.phase, phase),
            level=INFO)
        self.phase = phase

    def abort(self, reason):
        if self.phase != VALIDATING:
            raise ValueError("Cannot abort once {} has been reached"
                             .format(self.phase))
        log("Provisioning aborted: {}".format(reason), level=ERROR)
        self.phase = ABORTED


def artifact_url(download_root, filename):
    return '{}/{}'.format(download_root.rstrip('/'), filename)


class ProvisionSequencer(object):
    """Drive a node from validation to a hardened, running galera member.

    All host side effects go through the collaborators passed in; only this
    class decides when they run.

    @param cluster_config: ClusterConfig
    @param platform_facts: (platform, version, arch) tuple
    @param sst_receive_address: address this node receives SST on
    @param credentials: NodeCredentials
    """

    def __init__(self, cluster_config, platform_facts, sst_receive_address,
                 credentials, packages=None, artifacts=None, services=None,
                 files=None, commands=None, db=None):
        self.config = cluster_config
        self.platform_facts = platform_facts
        self.sst_receive_address = sst_receive_address
        self.node = ProvisionedNode(credentials)
        self.profile = None
        self.packages = packages
        self.artifacts = artifacts or ArtifactCache()
        self.services = services or ServiceManager()
        self.files = files or HostFiles()
        self.commands = commands or Commands()
        self.db = db or DatabaseClient()
        self.pending_action = None

    def run(self):
        self.validate()
        self.replace_packages()
        self.prepare_directories()
        self.write_config()
        self.initialize_data()
        self.start_service()
        self.harden()
        self.apply_pending_action()
        return self.node

    def _abort(self, error):
        self.node.abort(str(error))
        raise error

    def validate(self):
        '''Check every precondition before anything is changed on the host'''
        try:
            self.profile = resolve_platform(*self.platform_facts)
        except UnsupportedPlatformError as e:
            self._abort(e)
        if not self.config.nodes:
            self._abort(ConfigError("No cluster nodes configured"))

        credentials = self.node.credentials
        missing = [key for key, value in (
            ('root-password', credentials.root_password),
            ('wsrep-password', credentials.wsrep_password)) if not value]
        if missing:
            if self.config.generate_passwords:
                reason = "Unable to determine {}".format(', '.join(missing))
            else:
                reason = ("You must set {} when generate-passwords is false"
                          .format(', '.join(missing)))
            self._abort(ConfigError(reason))

        if self.sst_receive_address == self.config.init_node:
            log("This node is the cluster initiator", level=INFO)
        if self.packages is None:
            self.packages = PackageManager(self.profile)
        self.node.advance(PACKAGE_TRANSITION)

    def replace_packages(self):
        """Swap any stock mysql server for the wsrep patched one.

        The stock server packages conflict with the patched server, so they
        are removed before anything is installed.
        """
        for name in self.config.server_packages:
            self.packages.remove(name)
        for name in self.profile.support_packages:
            self.packages.install(name)

        artifacts = (
            (self.profile.galera_package_name, self.profile.galera_package,
             self.config.galera_download_root, self.config.galera_checksum),
            (self.profile.server_package_name, self.profile.server_package,
             self.config.server_download_root, self.config.server_checksum),
        )
        for name, filename, download_root, checksum in artifacts:
            dest = os.path.join(self.config.cache_dir, filename)
            self.artifacts.fetch_if_missing(
                artifact_url(download_root, filename), dest,
                checksum=checksum)
            self.packages.install(name, dest)

    def directories(self):
        '''Directories mysqld needs, without duplicates, in creation order'''
        paths = [
            os.path.dirname(self.config.pid_file),
            os.path.dirname(self.config.slow_query_log),
            self.profile.confd_dir,
            self.config.log_dir,
            self.config.data_dir,
        ]
        return list(collections.OrderedDict.fromkeys(paths))

    def prepare_directories(self):
        for path in self.directories():
            self.files.ensure_directory(path, MYSQL_USER, MYSQL_GROUP,
                                        recursive=True)
        self.node.advance(DIRECTORIES_READY)

    def config_paths(self):
        return (os.path.join(self.profile.conf_dir, MY_CNF),
                os.path.join(self.profile.confd_dir, WSREP_CNF))

    def render(self, mask_secrets=False):
        '''Render (my.cnf, wsrep.cnf) for this node'''
        password = self.node.credentials.wsrep_password
        if mask_secrets:
            password = '*' * 8
        return render_configs(
            self.config, self.profile,
            build_cluster_urls(self.config.nodes, self.config.port),
            skip_federated(self.profile.platform, self.profile.version),
            self.sst_receive_address,
            enforce_tunables(self.config.mysqld_tunables()),
            sst_auth=Credentials(self.config.wsrep_user, password))

    def write_config(self):
        my_cnf, wsrep_cnf = self.render()
        my_cnf_path, wsrep_cnf_path = self.config_paths()
        my_cnf_changed = self.files.write_file(
            my_cnf_path, my_cnf, 'root', ROOT_GROUP, 0o644)
        # wsrep.cnf carries the SST credentials.
        wsrep_cnf_changed = self.files.write_file(
            wsrep_cnf_path, wsrep_cnf, 'root', MYSQL_GROUP, 0o640)

        if my_cnf_changed or wsrep_cnf_changed:
            if self.config.reload_action in ('restart', 'reload'):
                log("Configuration changed, scheduling mysql {}"
                    .format(self.config.reload_action), level=INFO)
                self.pending_action = self.config.reload_action
            else:
                log("Configuration changed but reload-action is {}. No "
                    "action taken.".format(self.config.reload_action),
                    level=INFO)
        self.node.advance(CONFIG_WRITTEN)

    def initialize_data(self):
        '''Populate the data directory unless it already holds a database'''
        marker = os.path.join(self.config.data_dir, SYSTEM_USER_TABLE)
        self.node.data_dir_present = self.files.exists(marker)
        if self.node.data_dir_present:
            log("{} exists, skipping data directory initialisation"
                .format(marker), level=DEBUG)
        else:
            self.commands.run(['mysql_install_db',
                               '--user={}'.format(MYSQL_USER),
                               '--datadir={}'.format(self.config.data_dir)])
        self.node.advance(DATA_INITIALIZED)

    def start_service(self):
        if self.services.ensure_running(self.profile.service_name):
            # mysqld has just read the current configuration files.
            self.pending_action = None
        self.node.advance(SERVICE_RUNNING)

    def harden(self):
        """Secure a freshly initialised server.

        The root password is only assigned while root can still log in
        without one; the remaining statements are safe to repeat.
        """
        credentials = self.node.credentials
        passwordless_root = Credentials('root', '')
        root = Credentials('root', credentials.root_password)

        if self.db.accepts_login(passwordless_root):
            log("Assigning mysql root password", level=INFO)
            self.db.execute_local(passwordless_root, SQL_SET_ROOT_PASSWORD,
                                  (credentials.root_password,))
        else:
            log("mysql root password already set", level=DEBUG)

        self.db.execute_local(root, SQL_DELETE_ANONYMOUS_USERS)
        self.db.execute_local(root, SQL_FLUSH_PRIVILEGES)
        self.db.execute_local(root, SQL_GRANT_WSREP_USER,
                              (self.config.wsrep_user,
                               credentials.wsrep_password))
        self.node.advance(HARDENED)

    def apply_pending_action(self):
        action, self.pending_action = self.pending_action, None
        if action == 'restart':
            self.services.restart(self.profile.service_name)
        elif action == 'reload':
            self.services.reload(self.profile.service_name)

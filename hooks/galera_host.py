''' Host side effects used while provisioning a galera node

Each class wraps one kind of mutating action so that the provisioning
sequence can be driven, and tested, against narrow interfaces.  Failures of
the underlying tools are re-raised as ProvisioningError.
'''
import collections
import hashlib
import os
import subprocess

import MySQLdb

from charmhelpers.core.hookenv import (
    log,
    DEBUG,
    INFO,
)
from charmhelpers.core.host import (
    ChecksumError,
    check_hash,
    file_hash,
    mkdir,
    service_reload,
    service_restart,
    service_resume,
    service_running,
    write_file,
)
from charmhelpers.contrib.database.mysql import MySQLHelper
from charmhelpers.fetch import (
    filter_installed_packages,
    install as package_install,
    purge as package_purge,
)
from charmhelpers.fetch.archiveurl import ArchiveUrlFetchHandler

from galera_config import GaleraError

Credentials = collections.namedtuple('Credentials', ['user', 'password'])


class ProvisioningError(GaleraError):
    '''Raised when an action on the host fails'''
    pass


class PackageManager(object):
    """Install and remove packages with charmhelpers.fetch.

    Installs accept a local artifact path so that downloaded .deb and .rpm
    files can be installed without a repository.
    """

    def __init__(self, profile):
        self.package_format = profile.package_format

    def installed(self, name):
        try:
            return not filter_installed_packages([name])
        except (subprocess.CalledProcessError, OSError) as e:
            raise ProvisioningError("Unable to query package {}: {}"
                                    .format(name, e))

    def _run(self, func, target, action, name):
        try:
            func(target, fatal=True)
        except (subprocess.CalledProcessError, OSError) as e:
            raise ProvisioningError("Failed to {} package {}: {}"
                                    .format(action, name, e))

    def remove(self, name):
        '''Remove package name if it is installed

        @returns True if the package was removed
        '''
        if not self.installed(name):
            log("Package {} not installed, nothing to remove".format(name),
                level=DEBUG)
            return False
        log("Removing {} package {}".format(self.package_format, name),
            level=INFO)
        self._run(package_purge, name, 'remove', name)
        return True

    def install(self, name, source=None):
        '''Install package name, from the local file source if given

        @returns True if the package was installed
        '''
        if self.installed(name):
            log("Package {} already installed".format(name), level=DEBUG)
            return False
        log("Installing {} package {} from {}"
            .format(self.package_format, name, source or 'archive'),
            level=INFO)
        self._run(package_install, [source or name], 'install', name)
        return True


class ArtifactCache(object):
    '''Download package artifacts into a local cache directory'''

    def __init__(self, handler=None):
        self.handler = handler or ArchiveUrlFetchHandler()

    def fetch_if_missing(self, url, dest, checksum=None):
        """Download url to dest unless dest already exists.

        Downloads go to a temporary file which is only moved into place once
        complete, so an interrupted download is never mistaken for a cached
        artifact.

        @param checksum: optional sha256 of the artifact; verified against
                         both cached and downloaded files
        @returns True if the artifact was downloaded
        """
        downloaded = False
        if os.path.exists(dest):
            log("{} already cached, skipping download".format(dest),
                level=DEBUG)
        else:
            log("Downloading {}".format(url), level=INFO)
            part = dest + '.part'
            try:
                mkdir(os.path.dirname(dest), perms=0o755)
                self.handler.download(url, part)
                os.rename(part, dest)
            except (OSError, ValueError) as e:
                raise ProvisioningError("Failed to download {}: {}"
                                        .format(url, e))
            downloaded = True

        if checksum:
            try:
                check_hash(dest, checksum, hash_type='sha256')
            except ChecksumError as e:
                # Drop the bad artifact so that a re-run fetches it again.
                os.remove(dest)
                raise ProvisioningError("Checksum verification failed for "
                                        "{}: {}".format(dest, e))
        return downloaded


class ServiceManager(object):

    def ensure_running(self, name):
        '''Enable and start service name unless it is already running

        @returns True if the service had to be started
        '''
        if service_running(name):
            log("Service {} already running".format(name), level=DEBUG)
            return False
        try:
            started = service_resume(name)
        except (ValueError, subprocess.CalledProcessError) as e:
            raise ProvisioningError("Failed to enable service {}: {}"
                                    .format(name, e))
        if not started:
            raise ProvisioningError("Failed to start service {}"
                                    .format(name))
        return True

    def restart(self, name):
        if not service_restart(name):
            raise ProvisioningError("Failed to restart service {}"
                                    .format(name))

    def reload(self, name):
        if not service_reload(name):
            raise ProvisioningError("Failed to reload service {}"
                                    .format(name))


class HostFiles(object):

    def exists(self, path):
        return os.path.exists(path)

    def ensure_directory(self, path, owner, group, recursive=True,
                         perms=0o755):
        '''Create path if missing and (re)apply its ownership

        @returns True if the directory was created
        '''
        created = not os.path.isdir(path)
        if (created and not recursive and
                not os.path.isdir(os.path.dirname(path))):
            raise ProvisioningError("Parent directory of {} does not exist"
                                    .format(path))
        try:
            mkdir(path, owner=owner, group=group, perms=perms)
        except (KeyError, OSError) as e:
            raise ProvisioningError("Failed to create directory {}: {}"
                                    .format(path, e))
        return created

    def write_file(self, path, content, owner, group, perms):
        '''Write content to path

        @returns True if the content of the file changed
        '''
        content = content.encode('utf-8')
        changed = file_hash(path) != hashlib.md5(content).hexdigest()
        try:
            write_file(path, content, owner=owner, group=group, perms=perms)
        except (KeyError, OSError) as e:
            raise ProvisioningError("Failed to write {}: {}".format(path, e))
        if changed:
            log("Updated {}".format(path), level=INFO)
        else:
            log("{} unchanged".format(path), level=DEBUG)
        return changed


class Commands(object):

    def run(self, cmd):
        log("Running: {}".format(' '.join(cmd)), level=INFO)
        try:
            subprocess.check_call(cmd)
        except (subprocess.CalledProcessError, OSError) as e:
            raise ProvisioningError("Command '{}' failed: {}"
                                    .format(' '.join(cmd), e))


class DatabaseClient(object):
    """Run administrative statements against the local mysqld.

    Statements are always executed with parameters passed separately from
    the SQL text.
    """
    PASSWD_TEMPLATE = '/var/lib/charm/galera/mysql.passwd'
    USER_PASSWD_TEMPLATE = '/var/lib/charm/galera/mysql-{}.passwd'

    def __init__(self, host='localhost'):
        self.host = host

    def _connect(self, credentials):
        m_helper = MySQLHelper(rpasswdf_template=self.PASSWD_TEMPLATE,
                               upasswdf_template=self.USER_PASSWD_TEMPLATE,
                               host=self.host)
        m_helper.connect(user=credentials.user,
                         password=credentials.password or '')
        return m_helper

    def accepts_login(self, credentials):
        try:
            m_helper = self._connect(credentials)
        except MySQLdb.OperationalError:
            return False
        m_helper.connection.close()
        return True

    def execute_local(self, credentials, statement, params=None):
        """Execute statement without replicating it to the cluster.

        wsrep_on is switched off for the session while the statement runs so
        that local administrative changes are not turned into write-sets.

        @raises ProvisioningError if the statement fails
        """
        try:
            m_helper = self._connect(credentials)
        except MySQLdb.OperationalError as e:
            raise ProvisioningError("Could not connect to mysql as {}: {}"
                                    .format(credentials.user, e))
        cursor = m_helper.connection.cursor()
        try:
            cursor.execute("SET SESSION wsrep_on=OFF")
            cursor.execute(statement, params)
            cursor.execute("SET SESSION wsrep_on=ON")
            m_helper.connection.commit()
        except MySQLdb.Error as e:
            raise ProvisioningError("Statement '{}' failed: {}"
                                    .format(statement, e))
        finally:
            cursor.close()
            m_helper.connection.close()
        return True

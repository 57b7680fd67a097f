''' Platform lookup tables for galera packages '''
import collections

from galera_config import GaleraError

RHEL_PLATFORMS = ('centos', 'redhat', 'fedora', 'suse', 'scientific',
                  'amazon')
# Clustered MySQL is not supported on desktop platforms.
UNSUPPORTED_PLATFORMS = ('windows', 'mac_os_x')

ARCH_ALIASES = {
    'i386': 'i386',
    'i586': 'i386',
    'i686': 'i386',
    'x86': 'i386',
    'x86_64': 'x86_64',
    'amd64': 'x86_64',
}

PACKAGES = {
    'rhel': {
        'galera': {
            'i386': 'galera-23.2.2-1.rhel5.i386.rpm',
            'x86_64': 'galera-23.2.2-1.rhel5.x86_64.rpm',
        },
        'mysql_server': {
            'i386': 'MySQL-server-5.5.28_wsrep_23.7-1.rhel5.i386.rpm',
            'x86_64': 'MySQL-server-5.5.28_wsrep_23.7-1.rhel5.x86_64.rpm',
        },
    },
    'debian': {
        'galera': {
            'i386': 'galera-23.2.2-i386.deb',
            'x86_64': 'galera-23.2.2-amd64.deb',
        },
        'mysql_server': {
            'i386': 'mysql-server-wsrep-5.5.28-23.7-i386.deb',
            'x86_64': 'mysql-server-wsrep-5.5.28-23.7-amd64.deb',
        },
    },
}

FAMILY_SETTINGS = {
    'rhel': {
        'package_format': 'rpm',
        'galera_package_name': 'galera',
        'server_package_name': 'MySQL-server',
        'wsrep_provider': '/usr/lib64/galera/libgalera_smm.so',
        'support_packages': ('openssl', 'psmisc', 'libaio', 'wget', 'rsync',
                             'nc'),
        'conf_dir': '/etc',
        'confd_dir': '/etc/mysql/conf.d',
        'socket': '/var/lib/mysql/mysql.sock',
        'service_name': 'mysql',
    },
    'debian': {
        'package_format': 'deb',
        'galera_package_name': 'galera',
        'server_package_name': 'mysql-server-wsrep',
        'wsrep_provider': '/usr/lib/galera/libgalera_smm.so',
        'support_packages': ('libssl0.9.8', 'psmisc', 'libaio1', 'wget',
                             'rsync', 'netcat'),
        'conf_dir': '/etc/mysql',
        'confd_dir': '/etc/mysql/conf.d',
        'socket': '/var/run/mysqld/mysqld.sock',
        'service_name': 'mysql',
    },
}

PlatformProfile = collections.namedtuple('PlatformProfile', [
    'platform',
    'version',
    'arch',
    'family',
    'package_format',
    'galera_package',
    'server_package',
    'galera_package_name',
    'server_package_name',
    'wsrep_provider',
    'support_packages',
    'conf_dir',
    'confd_dir',
    'socket',
    'service_name',
])


class UnsupportedPlatformError(GaleraError):
    '''Raised when galera cannot be installed on the host platform'''
    pass


def platform_family(platform):
    ''' Map a platform name onto the package family used for lookups '''
    platform = (platform or '').lower()
    if platform in UNSUPPORTED_PLATFORMS:
        raise UnsupportedPlatformError(
            "{} is not supported by the Galera MySQL solution"
            .format(platform))
    if platform in RHEL_PLATFORMS:
        return 'rhel'
    return 'debian'


def normalize_arch(arch):
    try:
        return ARCH_ALIASES[(arch or '').lower()]
    except KeyError:
        raise UnsupportedPlatformError(
            "No galera packages are available for architecture '{}'"
            .format(arch))


def resolve_platform(platform, version, arch):
    """Resolve the package profile for a host.

    @param platform: platform name, e.g. 'centos' or 'ubuntu'
    @param version: numeric platform version, e.g. 6.5 or 14.04
    @param arch: CPU architecture as reported by the kernel
    @raises UnsupportedPlatformError for desktop platforms and unknown
            architectures
    @returns PlatformProfile
    """
    family = platform_family(platform)
    arch = normalize_arch(arch)
    try:
        version = float(version)
    except (TypeError, ValueError):
        raise UnsupportedPlatformError(
            "Unable to parse platform version '{}' for {}"
            .format(version, platform))
    packages = PACKAGES[family]
    return PlatformProfile(
        platform=platform.lower(),
        version=version,
        arch=arch,
        family=family,
        galera_package=packages['galera'][arch],
        server_package=packages['mysql_server'][arch],
        **FAMILY_SETTINGS[family])

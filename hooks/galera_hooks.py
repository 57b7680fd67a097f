#!/usr/bin/env python3
import os
import platform
import sys

_path = os.path.dirname(os.path.realpath(__file__))
_root = os.path.abspath(os.path.join(_path, '..'))


def _add_path(path):
    if path not in sys.path:
        sys.path.insert(1, path)


_add_path(_path)
_add_path(_root)


from charmhelpers.core.hookenv import (
    Hooks, UnregisteredHookError,
    config,
    log,
    DEBUG,
    ERROR,
    status_set,
)
from charmhelpers.core.host import (
    lsb_release,
    service_running,
)
from charmhelpers.contrib.network.ip import get_iface_addr

from galera_config import (
    ClusterConfig,
    ConfigError,
    GaleraError,
)
from galera_host import ProvisioningError
from galera_platform import resolve_platform
from galera_provision import (
    NodeCredentials,
    ProvisionSequencer,
)
from galera_utils import (
    root_password,
    wsrep_password,
)

hooks = Hooks()


def get_platform_facts():
    """Determine (platform, version, arch) for this host.

    The platform and platform-version options take precedence over what
    lsb_release reports.
    """
    name = config('platform')
    version = config('platform-version')
    if not name or not version:
        release = lsb_release()
        name = name or release['DISTRIB_ID']
        version = version or release['DISTRIB_RELEASE']
    return name.lower(), version, platform.machine()


def get_sst_receive_address(cluster_config):
    '''Address other nodes send SST to, from config or the SST interface'''
    address = config('sst-receive-address')
    if address:
        return address
    iface = cluster_config.sst_receive_interface
    addresses = get_iface_addr(iface=iface, inet_type='AF_INET',
                               fatal=False)
    if not addresses:
        raise ConfigError("Unable to determine an IPv4 address for SST "
                          "receive interface {}".format(iface))
    log("Using {} on {} to receive SST".format(addresses[0], iface),
        level=DEBUG)
    return addresses[0]


def build_sequencer():
    cluster_config = ClusterConfig.from_options(config())
    generate = cluster_config.generate_passwords
    credentials = NodeCredentials(root_password(generate=generate),
                                  wsrep_password(generate=generate))
    return ProvisionSequencer(cluster_config,
                              get_platform_facts(),
                              get_sst_receive_address(cluster_config),
                              credentials)


def provision():
    '''Run the provisioning sequence for this unit'''
    sequencer = build_sequencer()
    status_set('maintenance', 'Provisioning galera node')
    try:
        node = sequencer.run()
    except ProvisioningError as e:
        log("Provisioning halted in phase {}: {}"
            .format(sequencer.node.phase, e), level=ERROR)
        raise
    status_set('active', 'Unit is ready')
    return node


@hooks.hook('install', 'config-changed', 'upgrade-charm')
def config_changed():
    provision()


@hooks.hook('update-status')
def update_status():
    log('Updating status.')
    profile = resolve_platform(*get_platform_facts())
    if service_running(profile.service_name):
        status_set('active', 'Unit is ready')
    else:
        status_set('blocked', 'MySQL is not running')


def main():
    try:
        hooks.execute(sys.argv)
    except UnregisteredHookError as e:
        log('Unknown hook {} - skipping.'.format(e))
    except GaleraError as e:
        log(str(e), level=ERROR)
        status_set('blocked', str(e))
        sys.exit(1)


if __name__ == '__main__':
    main()

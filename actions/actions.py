#!/usr/bin/env python3

import os
import sys
import traceback


_path = os.path.dirname(os.path.realpath(__file__))
_hooks = os.path.abspath(os.path.join(_path, '../hooks'))
_root = os.path.abspath(os.path.join(_path, '..'))


def _add_path(path):
    if path not in sys.path:
        sys.path.insert(1, path)


_add_path(_hooks)
_add_path(_root)


from charmhelpers.core.hookenv import (
    action_set,
    action_fail,
)

import galera_hooks
from galera_config import GaleraError


def provision(args):
    """Run the provisioning sequence on this unit.

    Safe to run on a unit that is already provisioned; the phase reached is
    reported in the action results.
    """
    sequencer = galera_hooks.build_sequencer()
    try:
        node = sequencer.run()
    except GaleraError as e:
        action_set({
            'phase': sequencer.node.phase,
            'output': str(e),
            'traceback': traceback.format_exc()})
        action_fail("Provisioning stopped in phase {}"
                    .format(sequencer.node.phase))
        return
    action_set({'phase': node.phase, 'outcome': 'Success'})


def render_config(args):
    """Show the configuration files this unit would write.

    Nothing on the host is changed.  SST credentials are masked.
    """
    sequencer = galera_hooks.build_sequencer()
    sequencer.validate()
    my_cnf, wsrep_cnf = sequencer.render(mask_secrets=True)
    my_cnf_path, wsrep_cnf_path = sequencer.config_paths()
    action_set({
        'my-cnf-path': my_cnf_path,
        'my-cnf': my_cnf,
        'wsrep-cnf-path': wsrep_cnf_path,
        'wsrep-cnf': wsrep_cnf})


# A dictionary of all the defined actions to callables (which take
# parsed arguments).
ACTIONS = {"provision": provision, "render-config": render_config}


def main(args):
    action_name = os.path.basename(args[0])
    try:
        action = ACTIONS[action_name]
    except KeyError:
        s = "Action {} undefined".format(action_name)
        action_fail(s)
        return s
    else:
        try:
            action(args)
        except Exception as e:
            action_fail("Action {} failed: {}".format(action_name, str(e)))


if __name__ == "__main__":
    sys.exit(main(sys.argv))

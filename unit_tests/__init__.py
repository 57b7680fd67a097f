import sys
from unittest import mock

sys.path.append('hooks')


class MySQLdbError(Exception):
    pass


class MySQLdbOperationalError(MySQLdbError):
    pass


# Keep the tests independent of the mysql client library and its native
# build.
sys.modules['MySQLdb'] = mock.MagicMock(
    Error=MySQLdbError,
    OperationalError=MySQLdbOperationalError)
# python-apt is imported by some charmhelpers modules.
sys.modules['apt'] = mock.Mock()

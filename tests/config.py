"""
Connection settings for the integration tests.

`hostname` and `port` of the PostgreSQL entry are filled in once the test
container is running.
"""
postgresql = {
    'drivername': 'postgresql',
    'hostname': 'localhost',
    'username': 'postgres',
    'password': 'postgres',
    'database': 'test_db',
    'port': 5432,
    'timeout': 30,
}

sqlite = {
    'drivername': 'sqlite',
    'database': ':memory:',
}

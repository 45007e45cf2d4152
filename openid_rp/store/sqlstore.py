"""
This module contains an C{L{OpenIDStore}} implementation backed by an
SQLite database, for relying parties that must keep associations and
consumed nonces across restarts.
"""
import logging
import sqlite3
import threading
import time

from openid_rp.association import Association
from openid_rp.store import nonce
from openid_rp.store.interface import OpenIDStore

_LOGGER = logging.getLogger(__name__)


def _inTxn(func):
    def wrapped(self, *args, **kwargs):
        return self._callInTransaction(func, self, *args, **kwargs)

    wrapped.__name__ = func.__name__[4:]
    wrapped.__doc__ = func.__doc__
    return wrapped


class SQLiteStore(OpenIDStore):
    """
    This is an SQLite-based C{L{OpenIDStore}}.

    The table names used are determined by the class variables
    C{L{associations_table}} and C{L{nonces_table}}.  To change the
    name of the tables used, pass new table names into the
    constructor.

    To create the tables with the proper schema, see the
    C{L{createTables}} method.

    All methods other than C{L{__init__}} and C{L{createTables}}
    should be considered implementation details.

    Nonces are kept in a table whose primary key is the
    C{(server_url, timestamp, salt)} triple, so recording a nonce is a
    single C{INSERT} that fails for a replayed value.

    @cvar associations_table: This is the default name of the table to
        keep associations in

    @cvar nonces_table: This is the default name of the table to keep
        nonces in.

    @sort: __init__, createTables
    """

    associations_table = 'oid_associations'
    nonces_table = 'oid_nonces'

    create_nonce_sql = """
    CREATE TABLE %(nonces)s
    (
        server_url VARCHAR(2047) NOT NULL,
        timestamp INTEGER NOT NULL,
        salt CHAR(40) NOT NULL,
        PRIMARY KEY (server_url, timestamp, salt)
    );
    """

    create_assoc_sql = """
    CREATE TABLE %(associations)s
    (
        server_url VARCHAR(2047),
        handle VARCHAR(255),
        secret BLOB(128),
        issued INTEGER,
        lifetime INTEGER,
        assoc_type VARCHAR(64),
        PRIMARY KEY (server_url, handle)
    );
    """

    set_assoc_sql = ('INSERT OR REPLACE INTO %(associations)s '
                     'VALUES (?, ?, ?, ?, ?, ?);')
    get_assocs_sql = ('SELECT handle, secret, issued, lifetime, assoc_type '
                      'FROM %(associations)s WHERE server_url = ?;')
    get_assoc_sql = (
        'SELECT handle, secret, issued, lifetime, assoc_type '
        'FROM %(associations)s WHERE server_url = ? AND handle = ?;')

    remove_assoc_sql = ('DELETE FROM %(associations)s '
                        'WHERE server_url = ? AND handle = ?;')
    clean_assoc_sql = 'DELETE FROM %(associations)s WHERE issued + lifetime < ?;'

    add_nonce_sql = 'INSERT INTO %(nonces)s VALUES (?, ?, ?);'
    clean_nonce_sql = 'DELETE FROM %(nonces)s WHERE timestamp < ?;'

    def __init__(self, conn, associations_table=None, nonces_table=None):
        """
        This creates a new SQLiteStore instance.  It requires an
        established database connection be given to it, and it allows
        overriding the default table names.

        @param conn: An established C{sqlite3} connection.  To share
            the store between threads, open it with
            C{check_same_thread=False}; the store serializes its own
            transactions.
        @type conn: C{sqlite3.Connection}

        @param associations_table: This is an optional parameter to
            specify the name of the table used for storing
            associations.  The default value is specified in
            C{L{SQLiteStore.associations_table}}.
        @type associations_table: C{str}

        @param nonces_table: This is an optional parameter to specify
            the name of the table used for storing nonces.  The
            default value is specified in C{L{SQLiteStore.nonces_table}}.
        @type nonces_table: C{str}
        """
        self.conn = conn
        self.cur = None
        self._lock = threading.RLock()
        self._statement_cache = {}
        self._table_names = {
            'associations': associations_table or self.associations_table,
            'nonces': nonces_table or self.nonces_table,
        }

    def blobDecode(self, blob):
        """Convert a blob as returned by the SQL engine into bytes."""
        return bytes(blob)

    def blobEncode(self, s):
        """Convert bytes into the object stored in a blob column."""
        return sqlite3.Binary(s)

    def _getSQL(self, sql_name):
        try:
            return self._statement_cache[sql_name]
        except KeyError:
            sql = getattr(self, sql_name)
            sql %= self._table_names
            self._statement_cache[sql_name] = sql
            return sql

    def _execSQL(self, sql_name, *args):
        sql = self._getSQL(sql_name)
        self.cur.execute(sql, args)

    def __getattr__(self, attr):
        # if the attribute starts with db_, use a default
        # implementation that looks up the appropriate SQL statement
        # as an attribute of this object and executes it.
        if attr[:3] == 'db_':
            sql_name = attr[3:] + '_sql'

            def func(*args):
                return self._execSQL(sql_name, *args)
            setattr(self, attr, func)
            return func
        else:
            raise AttributeError('Attribute %r not found' % (attr,))

    def _callInTransaction(self, func, *args, **kwargs):
        """Execute the given function inside of a transaction, with an
        open cursor. If no exception is raised, the transaction is
        comitted, otherwise it is rolled back."""
        with self._lock:
            # No nesting of transactions
            self.conn.rollback()

            try:
                self.cur = self.conn.cursor()
                try:
                    ret = func(*args, **kwargs)
                finally:
                    self.cur.close()
                    self.cur = None
            except Exception:
                self.conn.rollback()
                raise
            else:
                self.conn.commit()

            return ret

    def txn_createTables(self):
        """
        This method creates the database tables necessary for this
        store to work.  It should not be called if the tables already
        exist.
        """
        self.db_create_nonce()
        self.db_create_assoc()

    createTables = _inTxn(txn_createTables)

    def txn_storeAssociation(self, server_url, association):
        """Set the association for the server URL.

        Association -> NoneType
        """
        a = association
        self.db_set_assoc(
            server_url,
            a.handle,
            self.blobEncode(a.secret),
            a.issued,
            a.lifetime,
            a.assoc_type)

    storeAssociation = _inTxn(txn_storeAssociation)

    def txn_getAssociation(self, server_url, handle=None):
        """Get the most recent association that has been set for this
        server URL and handle.

        str -> NoneType or Association
        """
        if handle is not None:
            self.db_get_assoc(server_url, handle)
        else:
            self.db_get_assocs(server_url)

        rows = self.cur.fetchall()
        if len(rows) == 0:
            return None

        associations = []
        for handle, secret, issued, lifetime, assoc_type in rows:
            assoc = Association(handle, self.blobDecode(secret), issued, lifetime, assoc_type,
                                server_url=server_url)
            if assoc.isExpired():
                self.txn_removeAssociation(server_url, assoc.handle)
            else:
                associations.append((assoc.issued, assoc))

        if associations:
            associations.sort(key=lambda pair: pair[0])
            return associations[-1][1]
        else:
            return None

    getAssociation = _inTxn(txn_getAssociation)

    def txn_removeAssociation(self, server_url, handle):
        """Remove the association for the given server URL and handle,
        returning whether the association existed at all.

        (str, str) -> bool
        """
        self.db_remove_assoc(server_url, handle)
        return self.cur.rowcount > 0  # -1 is undefined

    removeAssociation = _inTxn(txn_removeAssociation)

    def txn_useNonce(self, server_url, timestamp, salt):
        """Return whether this nonce is new, and if it is, then
        record it.

        (str, int, str) -> bool"""
        try:
            self.db_add_nonce(server_url, int(timestamp), salt)
        except sqlite3.IntegrityError:
            # The key uniqueness check failed
            return False
        else:
            return True

    useNonce = _inTxn(txn_useNonce)

    def txn_cleanupNonces(self, horizon=None):
        if horizon is None:
            horizon = time.time() - nonce.SKEW
        self.db_clean_nonce(int(horizon))
        return self.cur.rowcount

    cleanupNonces = _inTxn(txn_cleanupNonces)

    def txn_cleanupAssociations(self):
        self.db_clean_assoc(int(time.time()))
        removed = self.cur.rowcount
        if removed:
            _LOGGER.debug('Removed %d expired associations', removed)
        return removed

    cleanupAssociations = _inTxn(txn_cleanupAssociations)

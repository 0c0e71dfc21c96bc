#  BSD 3-Clause License
#
#  Copyright (c) 2019, Elasticsearch BV
#  All rights reserved.
#
#  Redistribution and use in source and binary forms, with or without
#  modification, are permitted provided that the following conditions are met:
#
#  * Redistributions of source code must retain the above copyright notice, this
#    list of conditions and the following disclaimer.
#
#  * Redistributions in binary form must reproduce the above copyright notice,
#    this list of conditions and the following disclaimer in the documentation
#    and/or other materials provided with the distribution.
#
#  * Neither the name of the copyright holder nor the names of its
#    contributors may be used to endorse or promote products derived from
#    this software without specific prior written permission.
#
#  THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
#  AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
#  IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE
#  DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE
#  FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL
#  DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR
#  SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER
#  CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY,
#  OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE
#  OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

from dbcapture.instrumentation.packages.dbapi2 import ConnectionProxy, CursorProxy, DbApi2Instrumentation
from dbcapture.request import DbInfo
from dbcapture.utils import build_connection_string


class PGCursorProxy(CursorProxy):
    def _bake_sql(self, sql):
        # if this is a Composable object, use its `as_string` method
        # see https://www.psycopg.org/docs/sql.html
        if hasattr(sql, "as_string"):
            return sql.as_string(self.__wrapped__)
        return sql


class PGConnectionProxy(ConnectionProxy):
    cursor_proxy = PGCursorProxy


def _parse_dsn(dsn):
    from psycopg2.extensions import parse_dsn

    return parse_dsn(dsn)


def connection_params(args, kwargs):
    """
    Merges the connection parameters given as DSN and as keyword arguments,
    keyword arguments take precedence like they do in psycopg2.connect
    """
    dsn = args[0] if args else kwargs.get("dsn")
    params = dict(_parse_dsn(dsn)) if dsn else {}
    params.update((key, value) for key, value in kwargs.items() if value is not None)
    return params


class Psycopg2Instrumentation(DbApi2Instrumentation):
    name = "psycopg2"

    instrument_list = [("psycopg2", "connect")]

    connection_proxy = PGConnectionProxy

    def get_db_info(self, module, method, args, kwargs):
        params = connection_params(args, kwargs)
        host = params.get("host")
        if not host:
            # libpq falls back to the local unix socket
            host = "localhost"
        return DbInfo(
            system="postgresql",
            user=params.get("user"),
            db=params.get("dbname") or params.get("database"),
            connection_string=build_connection_string("postgresql", str(host), params.get("port")),
        )


class Psycopg2ExtensionsInstrumentation(DbApi2Instrumentation):
    """
    Some extensions do a type check on the Connection/Cursor in C-code, which our
    proxy fails. For these extensions, we need to ensure that the unwrapped
    Connection/Cursor is passed.
    """

    name = "psycopg2"

    instrument_list = [
        ("psycopg2.extensions", "register_type"),
        # register_json bypasses register_type
        ("psycopg2._json", "register_json"),
        ("psycopg2.extensions", "quote_ident"),
        ("psycopg2.extensions", "encrypt_password"),
    ]

    # position and keyword of the connection/cursor argument
    conn_arguments = {
        "register_type": (1, "conn_or_curs"),
        "register_json": (0, "conn_or_curs"),
        "quote_ident": (1, "scope"),
        "encrypt_password": (2, "scope"),
    }

    def call(self, module, method, wrapped, instance, args, kwargs):
        position, keyword = self.conn_arguments[method]
        if keyword in kwargs:
            kwargs[keyword] = _unwrap(kwargs[keyword])
        elif len(args) > position:
            args = args[:position] + (_unwrap(args[position]),) + args[position + 1 :]
        return wrapped(*args, **kwargs)


def _unwrap(obj):
    return getattr(obj, "__wrapped__", obj)

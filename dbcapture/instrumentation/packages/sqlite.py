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

import os

from dbcapture.instrumentation.packages.dbapi2 import (
    ConnectionProxy,
    CursorProxy,
    DbApi2Instrumentation,
    is_positional,
    trace_statement,
)
from dbcapture.request import DbInfo
from dbcapture.utils.encoding import force_text


class SQLiteCursorProxy(CursorProxy):
    pass


class SQLiteConnectionProxy(ConnectionProxy):
    cursor_proxy = SQLiteCursorProxy

    # we need to implement wrappers for the non-standard Connection.execute and
    # Connection.executemany methods, which create a cursor internally

    def _resolve(self, sql):
        return self._self_db_info, sql

    def _trace_sql(self, method, sql, params, captured):
        return trace_statement(self._self_instrumenter, self._resolve, method, sql, params, captured)

    def execute(self, sql, params=None):
        return self._trace_sql(self.__wrapped__.execute, sql, params, params)

    def executemany(self, sql, params=None):
        first = params[0] if is_positional(params) and params else None
        return self._trace_sql(self.__wrapped__.executemany, sql, params, first)


class SQLiteInstrumentation(DbApi2Instrumentation):
    name = "sqlite"

    instrument_list = [("sqlite3", "connect"), ("sqlite3.dbapi2", "connect")]

    connection_proxy = SQLiteConnectionProxy

    def get_db_info(self, module, method, args, kwargs):
        database = args[0] if args else kwargs.get("database")
        if database is None:
            return DbInfo(system="sqlite")
        database = force_text(os.fspath(database))
        # in-memory and temporary databases have no name
        if database in (":memory:", "") or database.startswith("file::memory:"):
            return DbInfo(system="sqlite", connection_string="sqlite::memory:")
        return DbInfo(system="sqlite", db=os.path.basename(database), connection_string="sqlite:" + database)

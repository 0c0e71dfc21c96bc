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

import sqlite3

import mock

from dbcapture.instrumentation import control, register
from dbcapture.instrumentation.packages.sqlite import SQLiteConnectionProxy


def test_instrument_by_name(dbcapture_client):
    try:
        assert control.instrument(names=["sqlite"]) == ["sqlite"]
        assert isinstance(sqlite3.connect(":memory:"), SQLiteConnectionProxy)
    finally:
        assert control.uninstrument(names=["sqlite"]) == []
    assert not isinstance(sqlite3.connect(":memory:"), SQLiteConnectionProxy)


def test_instrument_unknown_name_is_noop():
    assert control.instrument(names=["no_such_driver"]) == []


def test_instrument_is_idempotent(dbcapture_client):
    try:
        control.instrument(names=["sqlite"])
        first = sqlite3.connect
        control.instrument(names=["sqlite"])
        assert sqlite3.connect is first
    finally:
        control.uninstrument(names=["sqlite"])


def test_uninstrument_all(dbcapture_client):
    control.instrument()
    assert control.uninstrument() == []


def test_registry_returns_singletons():
    first = list(register.get_instrumentation_objects())
    second = list(register.get_instrumentation_objects())
    assert [id(obj) for obj in first] == [id(obj) for obj in second]
    assert "sqlite" in [obj.name for obj in first]


def test_register_custom_instrumentation():
    with mock.patch.object(register, "_cls_register", set()), mock.patch.object(
        register, "_instrumentation_singletons", {}
    ):
        register.register("dbcapture.instrumentation.packages.sqlite.SQLiteInstrumentation")
        assert [obj.name for obj in register.get_instrumentation_objects()] == ["sqlite"]

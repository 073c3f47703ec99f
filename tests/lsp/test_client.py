"""
Tests for lspbridge/lsp/client.py

Covers the initialize handshake, request validation, the plugin registry,
notification fan-out and server-initiated requests.
"""
from __future__ import annotations

import asyncio
from unittest.mock import Mock

import pytest
from lsprotocol.types import (
    CLIENT_REGISTER_CAPABILITY,
    INITIALIZE,
    INITIALIZED,
    TEXT_DOCUMENT_HOVER,
    TEXT_DOCUMENT_PUBLISH_DIAGNOSTICS,
    WORKSPACE_CONFIGURATION,
    ClientCapabilities,
    ConfigurationItem,
    ConfigurationParams,
    Hover,
    HoverParams,
    MarkupKind,
    Position,
    PublishDiagnosticsParams,
    TextDocumentIdentifier,
    WorkspaceFolder,
)

from lspbridge.lsp.client import (
    LanguageServerClient,
    SessionState,
    default_client_capabilities,
)
from lspbridge.lsp.errors import RequestTimeout, SessionClosedError, UnknownMethodError
from lspbridge.lsp.notifications import Notification


HOVER_PARAMS = HoverParams(
    text_document=TextDocumentIdentifier(uri="file:///project/a.py"),
    position=Position(line=0, character=0),
)


class TestConstructor:
    """Tests for LanguageServerClient construction."""

    def test_defaults(self, client, rpc):
        assert client.ready is False
        assert client.capabilities is None
        assert client.state is SessionState.UNINITIALIZED
        assert client.timeout == 10.0
        assert client.plugins == []
        assert rpc.notification_handler is not None
        assert rpc.request_handler is not None

    def test_custom_timeout_and_folders(self, rpc):
        folders = [WorkspaceFolder(uri="file:///project", name="project")]

        client = LanguageServerClient(
            rpc, root_uri="file:///project", workspace_folders=folders, timeout=2.5
        )

        assert client.timeout == 2.5
        assert client.get_initialization_options().workspace_folders == folders


class TestInitializationOptions:
    """Tests for get_initialization_options and the default capabilities."""

    def test_default_capabilities(self, client):
        params = client.get_initialization_options()

        assert params.process_id is None
        assert params.root_uri == "file:///project"
        assert params.capabilities == default_client_capabilities()

    def test_capabilities_object_replaces_default(self, rpc):
        custom = ClientCapabilities()

        client = LanguageServerClient(rpc, root_uri=None, capabilities=custom)

        assert client.get_initialization_options().capabilities is custom

    def test_capabilities_callable_transforms_default(self, rpc):
        def transform(capabilities):
            capabilities.text_document.hover = None
            return capabilities

        client = LanguageServerClient(rpc, root_uri=None, capabilities=transform)
        capabilities = client.get_initialization_options().capabilities

        assert capabilities.text_document.hover is None
        assert capabilities.text_document.completion is not None

    def test_initialization_options(self, rpc):
        client = LanguageServerClient(
            rpc, root_uri=None, initialization_options={"python": {"venv": ".venv"}}
        )

        assert client.get_initialization_options().initialization_options == {
            "python": {"venv": ".venv"}
        }

    def test_default_capabilities_content(self):
        capabilities = default_client_capabilities()
        text_document = capabilities.text_document

        assert text_document.hover.content_format == [MarkupKind.Markdown, MarkupKind.PlainText]
        assert text_document.synchronization.will_save is False
        assert text_document.synchronization.did_save is False
        assert text_document.completion.completion_item.snippet_support is True
        assert text_document.completion.context_support is False
        assert text_document.definition.link_support is True
        assert text_document.rename.prepare_support is True
        assert text_document.code_action.resolve_support.properties == ["edit"]
        assert "quickfix" in text_document.code_action.code_action_literal_support.code_action_kind.value_set
        assert capabilities.workspace.did_change_configuration.dynamic_registration is True


class TestInitialize:
    """Tests for the initialize handshake."""

    @pytest.mark.asyncio
    async def test_initialize(self, client, rpc):
        await client.initialize()
        await asyncio.sleep(0)

        assert client.ready is True
        assert client.state is SessionState.READY
        assert client.capabilities == rpc.capabilities
        [(method, params, timeout)] = rpc.requests
        assert method == INITIALIZE
        assert timeout == 30.0
        assert rpc.sent(INITIALIZED) != []

    @pytest.mark.asyncio
    async def test_initialize_is_sent_once(self, client, rpc):
        await asyncio.gather(client.initialize(), client.initialize(), client.initialize())
        await client.initialize()

        assert len(rpc.sent(INITIALIZE)) == 1
        assert client.ready is True

    @pytest.mark.asyncio
    async def test_initialize_failure(self, client, rpc):
        rpc.responses[INITIALIZE] = RequestTimeout(INITIALIZE, 30.0)

        with pytest.raises(RequestTimeout):
            await client.initialize()

        assert client.ready is False
        assert client.state is SessionState.UNINITIALIZED
        assert rpc.sent(INITIALIZED) == []

    @pytest.mark.asyncio
    async def test_initialize_retries_after_failure(self, client, rpc):
        rpc.responses[INITIALIZE] = RequestTimeout(INITIALIZE, 30.0)
        with pytest.raises(RequestTimeout):
            await client.initialize()
        del rpc.responses[INITIALIZE]

        await client.initialize()

        assert len(rpc.sent(INITIALIZE)) == 2
        assert client.state is SessionState.READY

    @pytest.mark.asyncio
    async def test_initialized_sent_before_ready(self, client, rpc):
        await client.initialize()

        assert [method for method, _ in rpc.notifications] == [INITIALIZED]
        assert client.ready is True

    @pytest.mark.asyncio
    async def test_initialized_failure_is_logged(self, client, rpc, caplog):
        rpc.notify_error = ConnectionError("pipe closed")

        await client.initialize()

        assert client.ready is True
        assert "initialized" in caplog.text

    @pytest.mark.asyncio
    async def test_initialize_after_close(self, client):
        client.close()

        with pytest.raises(SessionClosedError):
            await client.initialize()


class TestRequests:
    """Tests for request/notify validation and the typed methods."""

    @pytest.mark.asyncio
    async def test_typed_request_uses_session_timeout(self, client, rpc):
        rpc.responses[TEXT_DOCUMENT_HOVER] = Hover(contents="docs")

        result = await client.text_document_hover(HOVER_PARAMS)

        assert result == Hover(contents="docs")
        assert rpc.requests[-1] == (TEXT_DOCUMENT_HOVER, HOVER_PARAMS, 10.0)

    @pytest.mark.asyncio
    async def test_unknown_method(self, client):
        with pytest.raises(UnknownMethodError):
            await client.request("textDocument/unknown", HOVER_PARAMS, 1.0)
        with pytest.raises(UnknownMethodError):
            await client.notify("textDocument/unknown", HOVER_PARAMS)

    @pytest.mark.asyncio
    async def test_wrong_params_shape(self, client, rpc):
        with pytest.raises(TypeError):
            await client.request(TEXT_DOCUMENT_HOVER, {"position": 1}, 1.0)

        assert rpc.requests == []

    @pytest.mark.asyncio
    async def test_timeout_propagates(self, client, rpc):
        rpc.responses[TEXT_DOCUMENT_HOVER] = RequestTimeout(TEXT_DOCUMENT_HOVER, 10.0)

        with pytest.raises(RequestTimeout, match="timed out after 10s"):
            await client.text_document_hover(HOVER_PARAMS)


class TestPlugins:
    """Tests for the plugin registry and notification fan-out."""

    def test_attach_and_detach(self, client):
        plugin = Mock()

        client.attach_plugin(plugin)
        client.attach_plugin(plugin)
        assert client.plugins == [plugin]

        client.detach_plugin(plugin)
        assert client.plugins == []

    def test_detach_unknown_plugin_is_noop(self, client, rpc):
        client.detach_plugin(Mock())
        client.detach_plugin(Mock())

        assert rpc.closed is False

    def test_notifications_reach_plugins_and_listeners(self, client, rpc):
        first, second, listener = Mock(), Mock(), Mock()
        client.attach_plugin(first)
        client.attach_plugin(second)
        client.on_notification(listener)
        params = PublishDiagnosticsParams(uri="file:///project/a.py", diagnostics=[])

        rpc.notification_handler(TEXT_DOCUMENT_PUBLISH_DIAGNOSTICS, params)

        expected = Notification(method=TEXT_DOCUMENT_PUBLISH_DIAGNOSTICS, params=params)
        first.process_notification.assert_called_once_with(expected)
        second.process_notification.assert_called_once_with(expected)
        listener.assert_called_once_with(expected)

    def test_detached_plugin_gets_nothing(self, client):
        plugin = Mock()
        client.attach_plugin(plugin)
        client.detach_plugin(plugin)

        client.process_notification(Notification(method="x", params=None))

        plugin.process_notification.assert_not_called()

    def test_plugin_can_detach_during_dispatch(self, client):
        other = Mock()
        leaving = Mock()
        leaving.process_notification.side_effect = lambda n: client.detach_plugin(leaving)
        client.attach_plugin(leaving)
        client.attach_plugin(other)

        client.process_notification(Notification(method="x", params=None))

        other.process_notification.assert_called_once()
        assert client.plugins == [other]

    def test_notification_disposer(self, client):
        first, second = Mock(), Mock()
        dispose = client.on_notification(first)
        client.on_notification(second)

        dispose()
        dispose()
        client.process_notification(Notification(method="x", params=None))

        first.assert_not_called()
        second.assert_called_once()

    def test_auto_close_on_last_detach(self, rpc):
        client = LanguageServerClient(rpc, root_uri=None, auto_close=True)
        first, second = Mock(), Mock()
        client.attach_plugin(first)
        client.attach_plugin(second)

        client.detach_plugin(first)
        assert rpc.closed is False

        client.detach_plugin(second)
        assert rpc.closed is True
        assert client.state is SessionState.CLOSED

    def test_no_auto_close_by_default(self, client, rpc):
        plugin = Mock()
        client.attach_plugin(plugin)

        client.detach_plugin(plugin)

        assert rpc.closed is False


class TestServerRequests:
    """Tests for server-initiated requests."""

    def params(self, count):
        return ConfigurationParams(
            items=[ConfigurationItem(section=f"s{i}") for i in range(count)]
        )

    def test_configuration_defaults_to_null_per_item(self, client, rpc):
        assert rpc.request_handler(WORKSPACE_CONFIGURATION, self.params(3)) == [None, None, None]

    def test_configuration_resolver(self, rpc):
        resolver = Mock(return_value=[{"lint": True}])
        client = LanguageServerClient(
            rpc, root_uri=None, get_workspace_configuration=resolver
        )
        params = self.params(1)

        assert client.handle_server_request(WORKSPACE_CONFIGURATION, params) == [{"lint": True}]
        resolver.assert_called_once_with(params)

    def test_other_requests_get_null(self, client):
        assert client.handle_server_request(CLIENT_REGISTER_CAPABILITY, object()) is None


class TestClose:
    """Tests for close."""

    @pytest.mark.asyncio
    async def test_close(self, client, rpc):
        await client.initialize()

        client.close()
        client.close()

        assert rpc.closed is True
        assert client.ready is False
        assert client.state is SessionState.CLOSED

"""通知动作测试"""

import logging
import sys
from datetime import datetime
from unittest.mock import AsyncMock, patch

import aiosmtplib
import pytest
from aiohttp import test_utils, web

from overseer.alerts import EmailAction, ExecAction, LogAction, WebhookAction, action_factory
from overseer.models.health_check import AlertEvent, FailureKind, HealthStatus, ProbeResult
from overseer.utils.exceptions import ActionConfigError, InvalidConfigError, NotificationDeliveryError


def make_event(to_status=HealthStatus.UNHEALTHY, from_status=HealthStatus.HEALTHY):
    timestamp = datetime(2024, 1, 1, 12, 0, 0)
    if to_status == HealthStatus.HEALTHY:
        result = ProbeResult.succeeded('api', 0.0123, timestamp=timestamp)
    else:
        result = ProbeResult.failed('api', FailureKind.CONNECTION_REFUSED, 'refused "quoted"',
                                    timestamp=timestamp)
    return AlertEvent('api', from_status, to_status, timestamp, result)


class TestActionFactory:
    """通知动作工厂测试"""

    def test_supported_types(self):
        assert set(action_factory.get_supported_types()) == {'webhook', 'email', 'exec', 'log'}

    def test_create_action(self):
        action = action_factory.create_action({'name': 'hook', 'type': 'webhook',
                                               'url': 'https://hooks.example.com/x'})
        assert isinstance(action, WebhookAction)
        assert action.action_type == 'webhook'

    def test_missing_fields(self):
        with pytest.raises(InvalidConfigError):
            action_factory.create_action({'type': 'log'})

    def test_unsupported_type(self):
        with pytest.raises(InvalidConfigError):
            action_factory.create_action({'name': 'sms', 'type': 'sms'})

    def test_duplicate_names(self):
        with pytest.raises(InvalidConfigError):
            action_factory.create_actions([{'name': 'a', 'type': 'log'},
                                           {'name': 'a', 'type': 'log'}])

    def test_invalid_action_config(self):
        with pytest.raises(ActionConfigError):
            action_factory.create_action({'name': 'hook', 'type': 'webhook', 'url': 'not-a-url'})


class TestTemplates:
    """模板渲染测试"""

    def test_render_template(self):
        action = LogAction('log', {})
        rendered = action.render_template('{{target_id}} {{from_status}}->{{to_status}} '
                                          '[{{status}}] {{outcome}}', make_event())
        assert rendered == 'api healthy->unhealthy [UNHEALTHY] connection_refused'

    def test_json_escape(self):
        action = LogAction('log', {})
        rendered = action.render_template('{"m": "{{message}}"}', make_event(), json_escape=True)
        assert rendered == '{"m": "refused \\"quoted\\""}'

    def test_latency_in_ms(self):
        variables = LogAction.template_vars(make_event(HealthStatus.HEALTHY, HealthStatus.UNHEALTHY))
        assert variables['latency'] == '12.3'
        assert variables['message'] == '无'


class TestWebhookAction:
    """Webhook通知动作测试"""

    @staticmethod
    async def start_server(status=200):
        received = []

        async def handler(request):
            body = await request.text()
            received.append({'method': request.method, 'query': dict(request.query),
                             'body': body, 'headers': dict(request.headers)})
            return web.Response(status=status, text='ok' if status < 300 else 'server error')

        app = web.Application()
        app.router.add_route('*', '/hook', handler)
        server = test_utils.TestServer(app)
        await server.start_server()
        return server, received

    def test_validate_config(self):
        with pytest.raises(ActionConfigError):
            WebhookAction('hook', {'url': 'https://x.example.com', 'method': 'DELETE'})
        with pytest.raises(ActionConfigError):
            WebhookAction('hook', {'url': ''})

    @pytest.mark.asyncio
    async def test_default_json_payload(self):
        server, received = await self.start_server()
        try:
            action = WebhookAction('hook', {'url': str(server.make_url('/hook')),
                                            'headers': {'X-Token': 'secret'}})
            await action.send(make_event(HealthStatus.HEALTHY, HealthStatus.UNHEALTHY))
        finally:
            await server.close()

        assert received[0]['method'] == 'POST'
        assert received[0]['headers']['X-Token'] == 'secret'
        assert '"recovered": true' in received[0]['body']
        assert '"to_status": "healthy"' in received[0]['body']

    @pytest.mark.asyncio
    async def test_json_template(self):
        server, received = await self.start_server()
        try:
            action = WebhookAction('hook', {
                'url': str(server.make_url('/hook')),
                'template': '{"text": "{{target_id}} is {{status}}: {{message}}"}'
            })
            await action.send(make_event())
        finally:
            await server.close()

        assert 'api is UNHEALTHY: refused \\"quoted\\"' in received[0]['body']

    @pytest.mark.asyncio
    async def test_get_sends_query_params(self):
        server, received = await self.start_server()
        try:
            action = WebhookAction('hook', {'url': str(server.make_url('/hook')), 'method': 'GET'})
            await action.send(make_event())
        finally:
            await server.close()

        assert received[0]['query']['target_id'] == 'api'
        assert received[0]['query']['to_status'] == 'unhealthy'

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        server, _ = await self.start_server(status=500)
        try:
            action = WebhookAction('hook', {'url': str(server.make_url('/hook'))})
            with pytest.raises(NotificationDeliveryError):
                await action.send(make_event())
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_connection_error_raises(self):
        action = WebhookAction('hook', {'url': 'http://127.0.0.1:1/hook'})
        with pytest.raises(NotificationDeliveryError):
            await action.send(make_event())


class TestEmailAction:
    """邮件通知动作测试"""

    def setup_method(self):
        self.config = {
            'smtp_server': 'smtp.example.com',
            'smtp_port': 587,
            'username': 'alerts@example.com',
            'password': 'secret',
            'to_emails': ['ops@example.com'],
            'cc_emails': ['dev@example.com'],
        }

    def test_validate_config(self):
        EmailAction('mail', self.config)
        with pytest.raises(ActionConfigError):
            EmailAction('mail', {**self.config, 'to_emails': []})
        with pytest.raises(ActionConfigError):
            EmailAction('mail', {**self.config, 'to_emails': ['not-an-email']})
        with pytest.raises(ActionConfigError):
            EmailAction('mail', {**self.config, 'use_tls': True, 'start_tls': True})

    def test_create_email_message(self):
        action = EmailAction('mail', self.config)
        message = action.create_email_message(make_event())
        assert message['Subject'] == '[overseer] api: healthy -> unhealthy'
        assert message['To'] == 'ops@example.com'
        assert message['Cc'] == 'dev@example.com'

    @pytest.mark.asyncio
    async def test_send(self):
        action = EmailAction('mail', self.config)
        with patch('overseer.alerts.email_action.aiosmtplib.send', new=AsyncMock()) as mock_send:
            await action.send(make_event())

        kwargs = mock_send.call_args.kwargs
        assert kwargs['hostname'] == 'smtp.example.com'
        assert kwargs['start_tls'] is True
        assert kwargs['username'] == 'alerts@example.com'

    @pytest.mark.asyncio
    async def test_send_failure(self):
        action = EmailAction('mail', self.config)
        error = aiosmtplib.SMTPException('relay denied')
        with patch('overseer.alerts.email_action.aiosmtplib.send', new=AsyncMock(side_effect=error)):
            with pytest.raises(NotificationDeliveryError):
                await action.send(make_event())


@pytest.mark.skipif(sys.platform == 'win32', reason='需要 POSIX shell')
class TestExecAction:
    """外部命令通知动作测试"""

    def test_validate_config(self):
        with pytest.raises(ActionConfigError):
            ExecAction('cmd', {'command': 'restart.sh'})
        with pytest.raises(ActionConfigError):
            ExecAction('cmd', {'command': []})

    def test_build_environment(self):
        action = ExecAction('restart', {'command': ['true'], 'env': {'SERVICE': 'api'}})
        environment = action.build_environment(make_event())
        assert environment['OVERSEER_TARGET_ID'] == 'api'
        assert environment['OVERSEER_TO_STATUS'] == 'unhealthy'
        assert environment['OVERSEER_OUTCOME'] == 'connection_refused'
        assert environment['OVERSEER_ACTION'] == 'restart'
        assert environment['SERVICE'] == 'api'

    @pytest.mark.asyncio
    async def test_command_receives_event(self, tmp_path):
        output = tmp_path / 'out.txt'
        action = ExecAction('cmd', {'command': [
            '/bin/sh', '-c', f'echo "$OVERSEER_TARGET_ID {{{{to_status}}}}" > {output}']})
        await action.send(make_event())
        assert output.read_text().strip() == 'api unhealthy'

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises(self):
        action = ExecAction('cmd', {'command': ['/bin/sh', '-c', 'echo boom >&2; exit 3']})
        with pytest.raises(NotificationDeliveryError) as exc_info:
            await action.send(make_event())
        assert '3' in exc_info.value.message

    @pytest.mark.asyncio
    async def test_timeout_kills_command(self):
        action = ExecAction('cmd', {'command': ['/bin/sh', '-c', 'sleep 10'], 'timeout': 0.2})
        with pytest.raises(NotificationDeliveryError):
            await action.send(make_event())

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        action = ExecAction('cmd', {'command': ['/nonexistent/restart-service']})
        with pytest.raises(NotificationDeliveryError):
            await action.send(make_event())


class TestLogAction:
    """日志通知动作测试"""

    def test_invalid_level(self):
        with pytest.raises(ActionConfigError):
            LogAction('log', {'level': 'LOUD'})

    @pytest.mark.parametrize('to_status, level', [
        (HealthStatus.UNHEALTHY, logging.ERROR),
        (HealthStatus.DEGRADED, logging.WARNING),
        (HealthStatus.HEALTHY, logging.INFO),
    ])
    def test_default_levels(self, to_status, level):
        action = LogAction('log', {})
        assert action._level_for(make_event(to_status)) == level

    @pytest.mark.asyncio
    async def test_send_logs_rendered_template(self):
        action = LogAction('log', {'level': 'warning', 'template': '{{target_id}} -> {{to_status}}'})
        with patch.object(action.logger, 'log') as mock_log:
            await action.send(make_event())
        mock_log.assert_called_once_with(logging.WARNING, 'api -> unhealthy')

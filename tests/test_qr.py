import json
import os

import pytest

from vendqr.errors import ExpiredPayload, InvalidPayload
from vendqr.services import qr
from vendqr.services.envelope import seal
from vendqr.time_utils import epoch_ms


def test_generate_then_validate(app):
    issued = qr.generate(42)
    payload = qr.validate(issued['token'])
    assert payload == issued['payload']
    assert payload['machineId'] == 42


def test_each_generation_is_unique(app):
    a, b = qr.generate(7), qr.generate(7)
    assert a['token'] != b['token']
    assert a['payload']['uniqueId'] != b['payload']['uniqueId']


def test_age_boundary(app):
    issued = qr.generate(1)
    ts = issued['payload']['timestamp']
    assert qr.validate(issued['token'], now_ms=ts + qr.max_age_ms())['machineId'] == 1
    with pytest.raises(ExpiredPayload):
        qr.validate(issued['token'], now_ms=ts + qr.max_age_ms() + 1)


def test_future_timestamp_accepted(app):
    token = seal(json.dumps({
        'machineId': 3, 'timestamp': epoch_ms() + 60_000,
        'uniqueId': '0b8e6f0e-8a4a-4f57-9a53-1d0c9a1e2f00',
    }).encode())
    assert qr.validate(token)['machineId'] == 3


@pytest.mark.parametrize('payload', [
    ['not', 'an', 'object'],
    {'timestamp': 1, 'uniqueId': '0b8e6f0e-8a4a-4f57-9a53-1d0c9a1e2f00'},
    {'machineId': '42', 'timestamp': 1, 'uniqueId': '0b8e6f0e-8a4a-4f57-9a53-1d0c9a1e2f00'},
    {'machineId': True, 'timestamp': 1, 'uniqueId': '0b8e6f0e-8a4a-4f57-9a53-1d0c9a1e2f00'},
    {'machineId': 0, 'timestamp': 1, 'uniqueId': '0b8e6f0e-8a4a-4f57-9a53-1d0c9a1e2f00'},
    {'machineId': 4, 'timestamp': 'yesterday', 'uniqueId': '0b8e6f0e-8a4a-4f57-9a53-1d0c9a1e2f00'},
    {'machineId': 4, 'timestamp': 1, 'uniqueId': 'not-a-uuid'},
])
def test_bad_shape_is_invalid(app, payload):
    token = seal(json.dumps(payload).encode())
    with pytest.raises(InvalidPayload):
        qr.validate(token)


def test_non_json_plaintext_is_invalid(app):
    with pytest.raises(InvalidPayload):
        qr.validate(seal(b'\xff\xfe not json'))


@pytest.mark.parametrize('token', ['', 'garbage', 'abcd:efgh', '00' * 16 + ':' + '00' * 16])
def test_garbage_is_invalid(app, token):
    with pytest.raises(InvalidPayload):
        qr.validate(token)


def test_tampered_ciphertext_is_invalid(app):
    token = qr.generate(5)['token']
    iv_hex, _, ct_hex = token.partition(':')
    # flipping the last block corrupts the padding
    flipped = ct_hex[:-2] + format(int(ct_hex[-2:], 16) ^ 0xFF, '02x')
    with pytest.raises(InvalidPayload):
        qr.validate(f'{iv_hex}:{flipped}')


def test_gcm_tokens_validate(app, monkeypatch):
    monkeypatch.setitem(app.config, 'QR_CIPHER_MODE', 'gcm')
    issued = qr.generate(9)
    assert len(issued['token'].partition(':')[0]) == 24
    monkeypatch.setitem(app.config, 'QR_CIPHER_MODE', 'cbc')
    assert qr.validate(issued['token'])['machineId'] == 9


def test_render_image_and_data_url(app, tmp_path):
    token = qr.generate(11)['token']
    path = qr.render_image(token, str(tmp_path / 'nested' / 'machine_11.png'))
    assert os.path.exists(path)
    with open(path, 'rb') as f:
        assert f.read(8) == b'\x89PNG\r\n\x1a\n'
    assert qr.render_data_url(token).startswith('data:image/png;base64,')


def test_decode_image_reads_rendered_code(app):
    assert qr.decode_image(qr.make_qr_bytes('machine-12')) == 'machine-12'


def test_decode_image_rejects_non_image(app):
    with pytest.raises(InvalidPayload):
        qr.decode_image(b'definitely not a png')

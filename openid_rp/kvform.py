"""Key-value form, the encoding of direct responses and of signed data.

A document is a sequence of C{key:value} lines, each ending with a newline.
"""
import logging

__all__ = ['seqToKV', 'dictToKV', 'kvToDict', 'KVFormError']


_LOGGER = logging.getLogger(__name__)


class KVFormError(ValueError):
    """Raised for pairs that can not be written in key-value form."""


def seqToKV(pairs):
    """Write pairs in key-value form, in the order given.

    @type pairs: Iterable[Tuple[str, str]]
    @rtype: str
    @raises KVFormError: if a key or a value can not be represented
    """
    lines = []
    for key, value in pairs:
        if not isinstance(key, str) or not isinstance(value, str):
            raise KVFormError('Pair must be text: %r' % ((key, value),))
        if ':' in key or '\n' in key:
            raise KVFormError('Invalid key %r' % (key,))
        if '\n' in value:
            raise KVFormError('Value of %r contains a newline' % (key,))
        # Written as given, a signature covers the exact values.
        if key.strip() != key or value.strip() != value:
            _LOGGER.debug('Whitespace around key-value pair %r', (key, value))
        lines.append('%s:%s\n' % (key, value))
    return ''.join(lines)


def dictToKV(data):
    """Write a dictionary in key-value form, sorted by key."""
    return seqToKV(sorted(data.items()))


def kvToDict(data):
    """Parse a key-value form document sent by a provider.

    Malformed lines are skipped and whitespace around keys and values is
    dropped.  Each such deviation is logged.

    @type data: Union[str, bytes]
    @rtype: Dict[str, str]
    """
    if isinstance(data, bytes):
        data = data.decode('utf-8')

    if data and not data.endswith('\n'):
        _LOGGER.debug('Key-value form does not end with a newline: %r', data)

    result = {}
    for number, line in enumerate(data.split('\n'), 1):
        if not line.strip():
            continue

        key, colon, value = line.partition(':')
        if not colon:
            _LOGGER.debug('Line %d of key-value form has no colon: %r', number, line)
            continue

        if key.strip() != key:
            _LOGGER.debug('Line %d of key-value form has whitespace around key %r', number, key)
        if value.strip() != value:
            _LOGGER.debug('Line %d of key-value form has whitespace around value %r', number, value)
        key = key.strip()
        if not key:
            _LOGGER.debug('Line %d of key-value form has an empty key', number)
        result[key] = value.strip()
    return result

import functools

from starlette.responses import Response


def response_wrapper(func):
    """Wrap a view's return value as ``{'message': ..., 'data': ...}``.

    A ``message`` key in a returned dict is lifted to the envelope. Starlette
    responses pass through untouched.
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        result = await func(*args, **kwargs)
        if isinstance(result, Response):
            return result
        message = 'Success'
        if isinstance(result, dict) and 'message' in result:
            result = dict(result)
            message = result.pop('message')
            if set(result) == {'data'}:
                result = result['data']
        return {'message': message, 'data': result}

    return wrapper

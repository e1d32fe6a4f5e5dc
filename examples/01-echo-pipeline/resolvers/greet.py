def request(ctx):
    ctx.stash["requested_at"] = ctx.util.time.now_iso8601()
    return {}


def response(ctx):
    return {
        "message": ctx.result,
        "requestedAt": ctx.stash["requested_at"],
        "caller": ctx.util.auth_type(),
    }

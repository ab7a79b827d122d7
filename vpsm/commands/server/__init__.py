"""Server lifecycle commands: start, stop, create, toggle, actions."""


def register_server_command(subparsers):
    """Register the 'server' command and its action subparsers."""
    from vpsm.commands.server.actions import register_actions_command
    from vpsm.commands.server.create import register_create_command
    from vpsm.commands.server.power import register_start_command, register_stop_command
    from vpsm.commands.server.toggle import register_toggle_command

    server_parser = subparsers.add_parser("server", help="Manage servers")
    action_subparsers = server_parser.add_subparsers(dest="action", required=True)

    register_start_command(action_subparsers)
    register_stop_command(action_subparsers)
    register_create_command(action_subparsers)
    register_toggle_command(action_subparsers)
    register_actions_command(action_subparsers)

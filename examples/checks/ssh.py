"""Script generator used by the Linux baseline example."""


def effective_config(context):
    if context.os == "windows":
        return ""
    sudo = "" if context.user == "root" else "sudo -n "
    return f"{sudo}sshd -T 2>/dev/null || cat /etc/ssh/sshd_config"

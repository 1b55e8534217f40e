# rotabackup configuration
# Copy to backup.conf.py (or point ROTABACKUP_CONFIG / --config at it).

LOG_DIR = '/var/log/rotabackup'
LOCAL_BACKUP_DIR = '/srv/backup/staging'
TEMP_DIR = '/srv/backup/tmp'

SOURCE_DIRS = [
    '/home/user/projects/website',   # git repository -> mirrored
    '/home/user/documents',          # plain directory -> rsync
]

# user@host of the retention host and the directory archives go under
# (artifacts land in <REMOTE_DEST_DIR>/archive/)
REMOTE_HOST = 'backup@storage.example.com'
REMOTE_DEST_DIR = '/data/backups/workstation'
# SSH_KEY_FILE = '~/.ssh/id_ed25519'
# REMOTE_PORT = 22

# 'months', 'weeks', anything else means daily buckets
BACKUP_PERIOD = 'weeks'

# Skip device nodes, sockets and named pipes in plain directories
IGNORE_SPECIAL_FILES = True

# False: an unreachable remote only defers rotation instead of aborting the run
REMOTE_REQUIRED = True

# Used by `rotabackup schedule`
SCHEDULE_CRON = '0 * * * *'
